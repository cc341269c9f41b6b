"""CLI dispatcher: argument parsing and routing to command handlers."""

import argparse
import sys
from typing import Callable

from .common import add_push_args, add_verbosity_args

# Subcommands of ``push``; ``trigger`` applies every unit's own backend
PUSH_COMMANDS = ("git", "borg", "trigger")


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="dionysius",
        description="Plan and run backups of a tree of git repositories and directories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    parser.add_argument(
        "-t",
        "--threads",
        type=int,
        metavar="N",
        help="Worker pool size for inspection and dispatch (overrides config)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    # push command with one subcommand per backend selection
    push_parser = subparsers.add_parser(
        "push",
        help="Back up every push-able directory under a root",
        description="Walk a directory tree, classify it and preview or run the backups",
    )
    push_subs = push_parser.add_subparsers(dest="push_action", metavar="BACKEND")
    push_helps = {
        "git": "Push git repositories",
        "borg": "Archive directories configured for borg",
        "trigger": "Run every unit with its configured backend",
    }
    for name in PUSH_COMMANDS:
        add_push_args(push_subs.add_parser(name, help=push_helps[name]))

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate, initialize, or show configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )

    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )

    show_parser = config_subs.add_parser(
        "show",
        help="Show a parsed configuration file",
    )
    show_parser.add_argument(
        "file",
        metavar="FILE",
        help="Central config.toml or a directory's dionysius.toml",
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"dionysius {__version__}")
        return 0

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return 1

    # Route to appropriate command handler
    handlers: dict[str, Callable] = {
        "push": cmd_push,
        "config": cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


def cmd_push(args: argparse.Namespace) -> int:
    """Execute push command."""
    from .push import execute_push

    return execute_push(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for dionysius CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    return run_subcommand(args)
