# pyright: standard

"""dionysius: dionysius/__util__.py
Common utility code shared among modules.
"""

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"--[ {caption} ]--"


def shell_join(argv: Sequence[str]) -> str:
    """Render an argument vector as a copy-pasteable shell line."""
    return shlex.join([str(arg) for arg in argv])


def exec_subprocess(
    command: Sequence[str],
    cwd: Path | str | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """Run ``command`` to completion, capturing its output as text.

    Raises:
        FileNotFoundError / PermissionError: the program could not be spawned
        subprocess.TimeoutExpired: the command exceeded ``timeout``; the child
            has been killed by the time this propagates
    """
    logger.debug("Executing: %s (cwd=%s)", shell_join(command), cwd)
    run_env = os.environ.copy()
    if env:
        run_env.update(env)
    return subprocess.run(
        list(command),
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=timeout,
        env=run_env,
        check=False,
    )
