"""Per-directory settings resolution.

A ``ConfigTree`` maps directories (as path parts below the walk root) to the
settings declared for them. ``resolve`` folds the settings on the path from
the root down to one directory into an ``EffectiveConfig``; it only reads
the tree, so two calls with the same arguments always agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

from ..core.exclude import ExclusionRule, RuleOrigin, rules_from_patterns
from .loader import ConfigResolutionError
from .schema import BACKEND_DEFAULTS, Backend, Config, ConfigNode

logger = logging.getLogger(__name__)

Parts = tuple[str, ...]


def _entry_parts(path: str, root: Path) -> Parts | None:
    """Turn a ``[[directories]]`` path into parts below ``root``.

    Absolute paths outside ``root`` give None.
    """
    pure = PurePosixPath(path)
    if pure.is_absolute():
        try:
            pure = PurePosixPath(Path(path).resolve().relative_to(root.resolve()))
        except ValueError:
            return None
    parts = tuple(p for p in pure.parts if p not in ("", "."))
    if ".." in parts:
        raise ConfigResolutionError(
            f"Directory entry '{path}' points outside the backup root"
        )
    return parts


@dataclass(frozen=True)
class ConfigTree:
    """Immutable mapping of directories to their declared settings.

    Attributes:
        root: Walk root the directory entries are relative to
        defaults: ``[global]`` settings, applied at the root
        nodes: Declared settings keyed by path parts
        cli_rules: Exclusion rules given on the command line
    """

    root: Path
    defaults: ConfigNode = field(default_factory=lambda: ConfigNode(backend=Backend.GIT))
    nodes: Mapping[Parts, ConfigNode] = field(
        default_factory=lambda: MappingProxyType({})
    )
    cli_rules: tuple[ExclusionRule, ...] = ()

    @classmethod
    def from_config(
        cls, config: Config, root: Path | str, cli_excludes: Iterable[str] = ()
    ) -> ConfigTree:
        """Build the tree for a walk rooted at ``root``.

        Raises:
            ConfigResolutionError: Two entries name the same directory, or an
                entry escapes the root with ``..``
        """
        root = Path(root)
        nodes: dict[Parts, ConfigNode] = {}
        for entry in config.directories:
            parts = _entry_parts(entry.path, root)
            if parts is None:
                logger.debug("Ignoring directory entry outside %s: %s", root, entry.path)
                continue
            if parts in nodes:
                raise ConfigResolutionError(
                    f"Directory '{'/'.join(parts) or '.'}' is configured more than once"
                )
            nodes[parts] = entry.node

        return cls(
            root=root,
            defaults=config.global_config.defaults,
            nodes=MappingProxyType(nodes),
            cli_rules=rules_from_patterns(cli_excludes, RuleOrigin.CLI),
        )

    def node_at(self, parts: Sequence[str]) -> ConfigNode | None:
        return self.nodes.get(tuple(parts))

    def with_node(self, parts: Sequence[str], node: ConfigNode) -> ConfigTree:
        """Return a new tree where ``node`` is layered over the entry at ``parts``."""
        parts = tuple(parts)
        nodes = dict(self.nodes)
        nodes[parts] = node.layered_over(nodes.get(parts))
        return ConfigTree(
            root=self.root,
            defaults=self.defaults,
            nodes=MappingProxyType(nodes),
            cli_rules=self.cli_rules,
        )


@dataclass(frozen=True)
class EffectiveConfig:
    """Fully resolved settings of one directory.

    Attributes:
        exclusion_rules: Ordered rules; the last matching one decides
        require_sub: Every immediate subdirectory must be push-able
        backend: Backup mechanism for the directory
        explicit_backend: The directory's own settings choose the backend
        trigger_by: Push subcommands that select the directory
        options: Merged option bag per backend name
    """

    exclusion_rules: tuple[ExclusionRule, ...]
    require_sub: bool
    backend: Backend
    explicit_backend: bool
    trigger_by: tuple[str, ...]
    options: Mapping[str, Mapping[str, Any]]

    @property
    def backend_options(self) -> Mapping[str, Any]:
        return self.options[self.backend.value]

    @property
    def native_patterns(self) -> tuple[str, ...]:
        return tuple(r.native for r in self.exclusion_rules if r.native)

    def selected_by(self, command: str) -> bool:
        """Whether ``push <command>`` applies to the directory."""
        return command == "trigger" or command in self.trigger_by


def resolve(parts: Sequence[str], tree: ConfigTree) -> EffectiveConfig:
    """Resolve the settings of the directory at ``parts``.

    Unset fields come from the nearest ancestor that sets them, then from
    ``[global]``. Exclusion rules accumulate from the root down, each relative
    to the directory declaring it; ``exclude_inherit = false`` restarts the
    list at that directory (command line rules always stay). ``require_sub``
    only applies to the directory that sets it.
    """
    parts = tuple(parts)
    inherited = list(
        rules_from_patterns(tree.defaults.exclude_list or (), RuleOrigin.GLOBAL)
    )
    layered = tree.defaults
    for depth in range(len(parts) + 1):
        prefix = parts[:depth]
        node = tree.node_at(prefix)
        if node is None:
            continue
        if node.exclude_inherit is False:
            inherited = []
        inherited.extend(
            rules_from_patterns(node.exclude_list or (), RuleOrigin.DIRECTORY, prefix)
        )
        layered = node.layered_over(layered)

    own = tree.node_at(parts)
    backend = layered.backend or Backend.GIT
    trigger_by = layered.trigger_by or [backend.value]

    options = {}
    for name, defaults in BACKEND_DEFAULTS.items():
        merged = dict(defaults)
        merged.update(layered.sections.get(name, {}))
        options[name] = MappingProxyType(merged)

    return EffectiveConfig(
        exclusion_rules=tree.cli_rules + tuple(inherited),
        require_sub=bool(own is not None and own.require_sub),
        backend=backend,
        explicit_backend=own is not None and own.backend is not None,
        trigger_by=tuple(trigger_by),
        options=MappingProxyType(options),
    )
