"""Task dispatch in preview or execute mode.

Preview renders the commands and runs nothing. Execute runs them through a
runner (``__util__.exec_subprocess`` by default); a failing task is recorded
and the remaining tasks still run.
"""

import logging
import subprocess
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from .. import __util__
from .models import ClassificationResult, NodeResult, Verdict
from .report import Mode, Outcome, OutcomeKind, ReportEntry, RunReport
from .tasks import Command, Task

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]
ProgressCallback = Callable[[int, int, str], None]

__all__ = [
    "BackendInvocationFailure",
    "Dispatcher",
    "Mode",
    "Outcome",
    "OutcomeKind",
    "dispatch",
]


class BackendInvocationFailure(Exception):
    """A backend command exited non-zero, could not start, or timed out."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


def _invoke(
    command: Command, runner: Runner, timeout: Optional[float]
) -> str:
    """Run one command and return its combined output.

    Raises:
        BackendInvocationFailure: On spawn failure, timeout or non-zero exit
    """
    try:
        proc = runner(command.argv, cwd=command.cwd, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise BackendInvocationFailure(
            f"{command.program} timed out after {timeout:g}s",
            output=_decode(e.stderr) or _decode(e.output),
        )
    except OSError as e:
        raise BackendInvocationFailure(f"cannot start {command.program}: {e}")

    output = "\n".join(s for s in (proc.stdout, proc.stderr) if s)
    if proc.returncode != 0:
        raise BackendInvocationFailure(
            f"{command.program} exited with status {proc.returncode}", output=output
        )
    return output


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


def dispatch(
    task: Task,
    mode: Mode = Mode.PREVIEW,
    runner: Optional[Runner] = None,
    timeout: Optional[float] = None,
) -> Outcome:
    """Dispatch one task.

    In preview mode the runner is never called. In execute mode the task's
    commands run in order and the first failure stops the task.
    """
    if mode is Mode.PREVIEW:
        return Outcome.would_run(task)

    runner = runner or __util__.exec_subprocess
    outputs = []
    for command in task.commands:
        try:
            outputs.append(_invoke(command, runner, timeout))
        except BackendInvocationFailure as e:
            logger.error("%s: %s", task.display_path, e)
            outputs.append(e.output)
            return Outcome.failed(str(e), task, "\n".join(o for o in outputs if o))
    logger.info("%s: %s push done", task.display_path, task.backend.value)
    return Outcome.succeeded(task, "\n".join(o for o in outputs if o))


class Dispatcher:
    """Drain the tasks of a classification into a ``RunReport``.

    Tasks sharing a target run one after another; distinct targets run on a
    pool of ``workers`` threads. ``cancel`` stops new tasks from starting.

    Args:
        mode: Preview or execute
        workers: Pool size for execute mode
        timeout: Seconds each backend command may run
        runner: Process launcher, ``__util__.exec_subprocess`` by default
        on_progress: Progress callback (current, total, path)
    """

    def __init__(
        self,
        mode: Mode = Mode.PREVIEW,
        workers: int = 4,
        timeout: Optional[float] = None,
        runner: Optional[Runner] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.mode = mode
        self.workers = max(1, workers)
        self.timeout = timeout
        self.runner = runner
        self.on_progress = on_progress
        self._cancel = threading.Event()
        self._done = 0
        self._done_lock = threading.Lock()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, result: ClassificationResult) -> RunReport:
        report = RunReport(mode=self.mode, root=result.root)
        units = []
        for node in result.nodes:
            if node.task is None:
                report.add(ReportEntry.for_node(node, _non_task_outcome(node)))
            else:
                units.append(node)

        self._done = 0
        try:
            if self.mode is Mode.PREVIEW:
                for node in units:
                    self._run_one(node, report, len(units))
            else:
                self._execute(units, report)
        finally:
            report.cancelled = self.cancelled
            report.completed_at = time.time()
        return report

    def _execute(self, units: list[NodeResult], report: RunReport) -> None:
        groups: dict[str, list[NodeResult]] = defaultdict(list)
        for node in units:
            groups[node.task.target].append(node)
        total = len(units)

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {
                executor.submit(self._run_group, group, report, total): target
                for target, group in groups.items()
            }
            try:
                for future in as_completed(futures):
                    future.result()
            except KeyboardInterrupt:
                logger.warning("Interrupted: letting running commands finish")
                self.cancel()

    def _run_group(
        self, group: list[NodeResult], report: RunReport, total: int
    ) -> None:
        for node in group:
            self._run_one(node, report, total)

    def _run_one(self, node: NodeResult, report: RunReport, total: int) -> None:
        if self.cancelled:
            outcome = Outcome.skipped("cancelled")
        else:
            try:
                outcome = dispatch(node.task, self.mode, self.runner, self.timeout)
            except Exception as e:
                logger.error("%s: dispatch failed: %s", node.display_path, e)
                outcome = Outcome.failed(f"internal error: {e}", node.task)
        report.add(ReportEntry.for_node(node, outcome))

        with self._done_lock:
            self._done += 1
            done = self._done
        if self.on_progress:
            self.on_progress(done, total, node.display_path)


def _non_task_outcome(node: NodeResult) -> Outcome:
    if node.verdict is Verdict.CONTAINER:
        return Outcome.skipped("container")
    return Outcome.skipped(node.reason or node.verdict.value)
