"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Backend(Enum):
    """Backup mechanism applied to a push-able directory."""

    GIT = "git"
    BORG = "borg"
    RSYNC = "rsync"


class OnUnsave(Enum):
    """What a git task does with uncommitted changes."""

    SAVE = "save"  # autosave: add everything and commit
    IGNORE = "ignore"  # push what is committed
    INTERRUPT = "interrupt"  # refuse to push a dirty repository


# Keys accepted inside each backend section, with their defaults.
BACKEND_DEFAULTS: dict[str, dict[str, Any]] = {
    "git": {
        "remote": None,
        "on_unsave": OnUnsave.SAVE.value,
        "collapse_tracking": True,
        "autosave_message": "Autosave by dionysius",
    },
    "borg": {
        "target": None,
        "compression": "zstd",
        "one_file_system": True,
        "extra_exclude_mode": ["git"],
    },
    "rsync": {
        "target": None,
        "delete": False,
        "flags": ["-a"],
    },
}


@dataclass
class ConfigNode:
    """Settings attached to one directory (or to the global scope).

    Every field left as ``None`` is unset and inherited from the nearest
    ancestor that sets it.

    Attributes:
        exclude_list: Exclude patterns relative to this directory
        exclude_inherit: False drops the inherited exclude rules
        require_sub: Every immediate subdirectory must be push-able
        backend: Backup mechanism; setting it makes the directory a unit
        trigger_by: Push subcommands that select this directory
        sections: Backend option bags keyed by backend name
    """

    exclude_list: Optional[list[str]] = None
    exclude_inherit: Optional[bool] = None
    require_sub: Optional[bool] = None
    backend: Optional[Backend] = None
    trigger_by: Optional[list[str]] = None
    sections: dict[str, dict[str, Any]] = field(default_factory=dict)

    def layered_over(self, lower: "ConfigNode | None") -> "ConfigNode":
        """Return a node where this node's explicit values win over ``lower``."""
        if lower is None:
            return self
        sections = {name: dict(values) for name, values in lower.sections.items()}
        for name, values in self.sections.items():
            sections.setdefault(name, {}).update(values)
        return ConfigNode(
            exclude_list=_pick(self.exclude_list, lower.exclude_list),
            exclude_inherit=_pick(self.exclude_inherit, lower.exclude_inherit),
            require_sub=_pick(self.require_sub, lower.require_sub),
            backend=_pick(self.backend, lower.backend),
            trigger_by=_pick(self.trigger_by, lower.trigger_by),
            sections=sections,
        )


def _pick(value, fallback):
    return fallback if value is None else value


@dataclass
class DirectoryEntry:
    """A ``[[directories]]`` entry of the central configuration file.

    Attributes:
        path: Directory path, relative to the walk root or absolute
        node: Settings for that directory
    """

    path: str
    node: ConfigNode = field(default_factory=ConfigNode)


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        workers: Worker pool size for inspection and dispatch
        command_timeout: Seconds a single backend command may run
        defaults: Settings applied at the walk root
    """

    workers: int = 4
    command_timeout: float = 3600.0
    defaults: ConfigNode = field(
        default_factory=lambda: ConfigNode(backend=Backend.GIT)
    )


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        global_config: Global settings
        directories: Directory specific settings
    """

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    directories: list[DirectoryEntry] = field(default_factory=list)
