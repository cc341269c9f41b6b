"""Shared CLI utilities and argument parsers."""

import argparse


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def add_push_args(parser: argparse.ArgumentParser) -> None:
    """Add the options shared by every ``push`` subcommand."""
    parser.add_argument(
        "-d",
        "--dir",
        metavar="DIR",
        required=True,
        help="Root directory to walk",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-p",
        "--preview",
        action="store_true",
        help="Show the commands that would run (default)",
    )
    mode.add_argument(
        "-e",
        "--execute",
        action="store_true",
        help="Run the backend commands",
    )
    parser.add_argument(
        "-x",
        "--exclude",
        metavar="PATTERN",
        action="append",
        default=[],
        help="Exclude directories matching a gitignore pattern (repeatable)",
    )
    parser.add_argument(
        "-H",
        "--search-hidden",
        action="store_true",
        help="Also walk hidden directories",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Time limit for each backend command (overrides config)",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"
