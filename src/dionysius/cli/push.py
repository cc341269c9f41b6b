"""Push command: classify a directory tree and preview or run its backups."""

import argparse
import contextlib
import getpass
import hashlib
import logging
import time
from pathlib import Path

from filelock import FileLock, Timeout
from rich.console import Console

from .. import __util__
from ..__logger__ import create_logger
from ..config import Config, ConfigError, ConfigTree, find_config_file, load_config
from ..core.classifier import TaskClassifier
from ..core.dispatch import Dispatcher
from ..core.report import Mode, RunReport, render_report
from ..core.walk import WalkError, open_root
from .common import get_log_level

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def lock_path_for(root: Path) -> Path:
    """Lock file guarding executing runs over ``root``."""
    digest = hashlib.sha1(str(root).encode()).hexdigest()[:12]
    return Path("/tmp") / f".dionysius.{getpass.getuser()}.{digest}.lock"


def _load_config(args: argparse.Namespace) -> Config:
    """Load the central configuration, or the defaults when there is none.

    Raises:
        ConfigError: If the configuration file is invalid
    """
    config_path = find_config_file(getattr(args, "config", None))
    if config_path is None:
        logger.debug("No configuration file found, using defaults")
        return Config()

    logger.debug("Loading configuration from: %s", config_path)
    config, warnings = load_config(config_path)
    for warning in warnings:
        logger.warning("Config: %s", warning)
    return config


def exit_code(report: RunReport) -> int:
    """0 when everything ran, 1 on a failed task, 130 when interrupted."""
    if report.cancelled:
        return EXIT_INTERRUPTED
    return 1 if report.failed else 0


def execute_push(args: argparse.Namespace) -> int:
    """Execute the push command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    command = getattr(args, "push_action", None)
    if not command:
        print("Usage: dionysius push <git|borg|trigger> -d DIR")
        return 1

    try:
        config = _load_config(args)
        root = open_root(args.dir)
        tree = ConfigTree.from_config(config, root.path, args.exclude)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except WalkError as e:
        logger.error("%s", e)
        return 1

    workers = args.threads or config.global_config.workers
    timeout = args.timeout or config.global_config.command_timeout
    mode = Mode.EXECUTE if args.execute else Mode.PREVIEW

    if mode is Mode.EXECUTE:
        lock = FileLock(lock_path_for(root.path), timeout=0)
        try:
            guard = lock.acquire()
        except Timeout:
            logger.error("Another dionysius run is already executing over %s", root.path)
            return 1
    else:
        guard = contextlib.nullcontext()

    with guard:
        logger.info(
            __util__.log_heading(f"push {command} ({mode.value}) at {time.ctime()}")
        )
        try:
            classifier = TaskClassifier(
                root,
                tree,
                command=command,
                search_hidden=args.search_hidden,
                workers=workers,
            )
            result = classifier.classify()
        except KeyboardInterrupt:
            logger.warning("Interrupted while walking %s", root.path)
            return EXIT_INTERRUPTED

        def on_progress(current: int, total: int, path: str) -> None:
            logger.debug("[%d/%d] %s", current, total, path)

        dispatcher = Dispatcher(
            mode=mode,
            workers=workers,
            timeout=timeout,
            on_progress=on_progress,
        )
        report = dispatcher.run(result)

    render_report(report, Console())
    logger.info(__util__.log_heading(f"Finished in {report.duration:.1f}s"))
    return exit_code(report)

