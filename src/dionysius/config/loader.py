"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error
messages. Two sources exist: the central configuration file and the
``dionysius.toml`` files placed inside the directories being backed up.
"""

import tomllib
from pathlib import Path
from typing import Any

from .schema import (
    BACKEND_DEFAULTS,
    Backend,
    Config,
    ConfigNode,
    DirectoryEntry,
    GlobalConfig,
    OnUnsave,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


class ConfigResolutionError(ConfigError):
    """The configuration tree cannot be resolved into per-directory settings."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "dionysius" / "config.toml",
    Path("/etc/dionysius/config.toml"),
]

# Name of the per-directory configuration file
LOCAL_CONFIG_NAME = "dionysius.toml"

NODE_KEYS = frozenset(
    {
        "exclude_list",
        "exclude_inherit",
        "require_sub",
        "backend",
        "trigger_by",
        *BACKEND_DEFAULTS,
    }
)
GLOBAL_KEYS = NODE_KEYS | {"workers", "command_timeout"}
PUSH_COMMANDS = frozenset({"git", "borg", "rsync", "trigger"})


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")


def _expect(value: Any, kind: type | tuple[type, ...], key: str, where: str) -> Any:
    if not isinstance(value, kind):
        raise ConfigError(f"{where}: '{key}' has an invalid value {value!r}")
    return value


def _string_list(value: Any, key: str, where: str) -> list[str]:
    _expect(value, list, key, where)
    for item in value:
        _expect(item, str, key, where)
    return list(value)


def _parse_section(name: str, data: Any, where: str, warnings: list[str]) -> dict:
    """Parse one backend option bag (``[git]``, ``[borg]``, ``[rsync]``)."""
    _expect(data, dict, name, where)
    known = BACKEND_DEFAULTS[name]
    section = {}
    for key, value in data.items():
        if key not in known:
            warnings.append(f"{where}: unknown option '{name}.{key}'")
            continue
        section[key] = value

    if "on_unsave" in section:
        try:
            OnUnsave(section["on_unsave"])
        except ValueError:
            raise ConfigError(
                f"{where}: invalid on_unsave {section['on_unsave']!r} "
                f"(expected one of: {', '.join(m.value for m in OnUnsave)})"
            )
    for key in ("collapse_tracking", "one_file_system", "delete"):
        if key in section:
            _expect(section[key], bool, f"{name}.{key}", where)
    for key in ("extra_exclude_mode", "flags"):
        if key in section:
            section[key] = _string_list(section[key], f"{name}.{key}", where)
    for key in ("remote", "target", "compression", "autosave_message"):
        if key in section and section[key] is not None:
            _expect(section[key], str, f"{name}.{key}", where)
    return section


def _parse_node(
    data: dict[str, Any],
    where: str,
    warnings: list[str],
    allowed: frozenset[str] = NODE_KEYS,
) -> ConfigNode:
    """Parse the settings shared by [global], [[directories]] and local files."""
    for key in data:
        if key not in allowed:
            warnings.append(f"{where}: unknown key '{key}'")

    node = ConfigNode()
    if "exclude_list" in data:
        node.exclude_list = _string_list(data["exclude_list"], "exclude_list", where)
    if "exclude_inherit" in data:
        node.exclude_inherit = _expect(
            data["exclude_inherit"], bool, "exclude_inherit", where
        )
    if "require_sub" in data:
        node.require_sub = _expect(data["require_sub"], bool, "require_sub", where)
    if "backend" in data:
        try:
            node.backend = Backend(data["backend"])
        except ValueError:
            raise ConfigError(
                f"{where}: unknown backend {data['backend']!r} "
                f"(expected one of: {', '.join(b.value for b in Backend)})"
            )
    if "trigger_by" in data:
        trigger_by = _string_list(data["trigger_by"], "trigger_by", where)
        unknown = [t for t in trigger_by if t not in PUSH_COMMANDS]
        if unknown:
            raise ConfigError(f"{where}: unknown trigger_by value(s) {unknown}")
        node.trigger_by = trigger_by

    for name in BACKEND_DEFAULTS:
        if name in data:
            node.sections[name] = _parse_section(name, data[name], where, warnings)

    return node


def _parse_global(data: dict[str, Any], warnings: list[str]) -> GlobalConfig:
    """Parse global configuration from dict."""
    where = "[global]"
    defaults = _parse_node(data, where, warnings, allowed=GLOBAL_KEYS)
    if defaults.backend is None:
        defaults.backend = Backend.GIT
    if defaults.require_sub:
        warnings.append(f"{where}: require_sub only applies to directories, ignored")
        defaults.require_sub = None

    workers = data.get("workers", 4)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ConfigError(f"{where}: 'workers' must be a positive integer")
    timeout = data.get("command_timeout", 3600.0)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"{where}: 'command_timeout' must be a positive number")

    return GlobalConfig(
        workers=workers,
        command_timeout=float(timeout),
        defaults=defaults,
    )


def _parse_directory(
    data: dict[str, Any], index: int, warnings: list[str]
) -> DirectoryEntry:
    """Parse a [[directories]] entry."""
    where = f"[[directories]] #{index + 1}"
    if "path" not in data:
        raise ConfigError(f"{where}: missing required 'path' field")
    path = _expect(data["path"], str, "path", where)
    body = {k: v for k, v in data.items() if k != "path"}
    return DirectoryEntry(path=path, node=_parse_node(body, f"{where} ({path})", warnings))


def _validate_node(node: ConfigNode, where: str) -> list[str]:
    warnings = []
    if node.exclude_list and len(node.exclude_list) != len(set(node.exclude_list)):
        warnings.append(f"{where}: duplicate exclude patterns")
    if node.backend in (Backend.BORG, Backend.RSYNC):
        section = node.sections.get(node.backend.value, {})
        if not section.get("target"):
            warnings.append(
                f"{where}: backend '{node.backend.value}' has no target here; "
                "it must be inherited from an ancestor"
            )
    return warnings


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []
    defaults = config.global_config.defaults
    warnings.extend(_validate_node(defaults, "[global]"))

    for entry in config.directories:
        warnings.extend(_validate_node(entry.node, f"directory '{entry.path}'"))

    paths = [entry.path.rstrip("/") for entry in config.directories]
    if len(paths) != len(set(paths)):
        warnings.append("Duplicate directory paths detected")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    data = _read_toml(Path(path))
    warnings: list[str] = []

    for key in data:
        if key not in ("global", "directories"):
            warnings.append(f"Unknown top-level table '{key}'")

    global_config = _parse_global(
        _expect(data.get("global", {}), dict, "global", str(path)), warnings
    )
    directories = [
        _parse_directory(_expect(d, dict, "directories", str(path)), i, warnings)
        for i, d in enumerate(_expect(data.get("directories", []), list, "directories", str(path)))
    ]

    config = Config(global_config=global_config, directories=directories)
    warnings.extend(_validate_config(config))

    return config, warnings


def load_local_config(path: Path | str) -> tuple[ConfigNode, list[str]]:
    """Load a per-directory ``dionysius.toml`` file.

    Raises:
        ConfigError: If the file is invalid or cannot be parsed
    """
    path = Path(path)
    warnings: list[str] = []
    node = _parse_node(_read_toml(path), str(path), warnings)
    warnings.extend(_validate_node(node, str(path)))
    return node, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# dionysius configuration
# See documentation for full options

[global]
workers = 4               # worker pool for repository inspection and dispatch
command_timeout = 3600    # seconds a single backend command may run
backend = "git"           # backend for directories that do not choose one
exclude_list = [
    "node_modules/",
    "target/",
]

[global.git]
# remote = "origin"       # push to this remote instead of the upstream
on_unsave = "save"        # save | ignore | interrupt
collapse_tracking = true  # branches tracking each other count as one line

[global.borg]
# target = "/mnt/backup/borg"
compression = "zstd"
one_file_system = true
extra_exclude_mode = ["git"]   # also honour .gitignore in archived trees

# [global.rsync]
# target = "/mnt/backup/mirror"
# delete = false

# A directory whose subdirectories must all be push-able
# [[directories]]
# path = "work/monorepo"
# require_sub = true

# Archive a plain directory with borg
# [[directories]]
# path = "documents"
# backend = "borg"
# exclude_list = ["*.tmp", "cache/"]
#
# [directories.borg]
# target = "ssh://backup@nas/./documents"
"""
