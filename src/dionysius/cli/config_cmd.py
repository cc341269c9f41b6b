"""Config command: Configuration management."""

import argparse
import logging
from dataclasses import asdict
from enum import Enum
from pathlib import Path

from rich.console import Console
from rich.pretty import Pretty

from ..__logger__ import create_logger
from ..config import ConfigError, find_config_file, load_config, load_local_config
from ..config.loader import CONFIG_PATHS, LOCAL_CONFIG_NAME, generate_example_config
from .common import get_log_level

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    action = getattr(args, "config_action", None)

    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)
    elif action == "show":
        return _show_config(args)
    else:
        print("Usage: dionysius config <validate|init|show>")
        return 1


def _validate_config(args: argparse.Namespace) -> int:
    """Validate configuration file."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Searched locations:")
            for path in CONFIG_PATHS:
                print(f"  {path}")
            return 1

        print(f"Validating: {config_path}")
        config, warnings = load_config(config_path)

        if warnings:
            print("")
            print("Warnings:")
            for warning in warnings:
                print(f"  - {warning}")

        print("")
        print("Configuration is valid.")
        print(f"  Workers: {config.global_config.workers}")
        print(f"  Default backend: {config.global_config.defaults.backend.value}")
        print(f"  Directories: {len(config.directories)}")

        return 0

    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1


def _init_config(args: argparse.Namespace) -> int:
    """Generate example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if output:
        try:
            with open(output, "w") as f:
                f.write(content)
            print(f"Example configuration written to: {output}")
        except OSError as e:
            print(f"Error writing file: {e}")
            return 1
    else:
        print(content)

    return 0


def _plain(value):
    """Turn enums back into their TOML values for display."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _show_config(args: argparse.Namespace) -> int:
    """Print a parsed configuration file."""
    path = Path(args.file)
    try:
        if path.name == LOCAL_CONFIG_NAME:
            parsed, warnings = load_local_config(path)
        else:
            parsed, warnings = load_config(path)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    for warning in warnings:
        logger.warning("Config: %s", warning)
    Console().print(Pretty(_plain(asdict(parsed))))
    return 0
