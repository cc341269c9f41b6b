"""Directory nodes with lazily enumerated children."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path

from ..config.loader import LOCAL_CONFIG_NAME
from .exclude import is_hidden
from .repository import is_repository_root

logger = logging.getLogger(__name__)


class WalkError(Exception):
    """The walk root is missing or unreadable."""

    pass


@dataclass(frozen=True)
class ChildEntry:
    """A directory entry as seen by ``DirectoryNode.child_dirs``.

    Attributes:
        name: Entry name
        kind: ``dir`` for a walkable directory, ``symlink`` for a link to a
            directory, ``broken`` for a dangling link, ``unstattable`` when
            the entry cannot be examined and ``vanished`` when it disappeared
        error: Diagnostic for broken, unstattable and vanished entries
    """

    name: str
    kind: str
    error: str | None = None


@dataclass(eq=False)
class DirectoryNode:
    """A directory under the walk root.

    Entries are read once, on first use, and cached.
    """

    path: Path
    parts: tuple[str, ...] = ()
    _entries: list[ChildEntry] | None = field(default=None, init=False, repr=False)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_root(self) -> bool:
        return not self.parts

    @cached_property
    def is_hidden(self) -> bool:
        return not self.is_root and is_hidden(self.name)

    @cached_property
    def is_repository_root(self) -> bool:
        return is_repository_root(self.path)

    @cached_property
    def local_config_path(self) -> Path | None:
        candidate = self.path / LOCAL_CONFIG_NAME
        try:
            return candidate if candidate.is_file() else None
        except OSError:
            return None

    def child(self, name: str) -> DirectoryNode:
        return DirectoryNode(self.path / name, self.parts + (name,))

    def child_dirs(self) -> list[ChildEntry]:
        """Return the subdirectory entries, sorted by name.

        Raises:
            PermissionError: The directory cannot be listed
            FileNotFoundError: The directory disappeared
        """
        if self._entries is None:
            self._entries = sorted(self._scan(), key=lambda e: e.name)
        return self._entries

    def _scan(self) -> list[ChildEntry]:
        entries = []
        with os.scandir(self.path) as it:
            for entry in it:
                if entry.name == ".git":
                    continue
                child = _classify_entry(entry)
                if child is not None:
                    entries.append(child)
        return entries


def _classify_entry(entry: os.DirEntry) -> ChildEntry | None:
    """Describe a scandir entry, or return None for anything not a directory."""
    try:
        if entry.is_symlink():
            try:
                target = os.stat(entry.path)
            except FileNotFoundError:
                return ChildEntry(entry.name, "broken", "broken symlink")
            if stat.S_ISDIR(target.st_mode):
                return ChildEntry(entry.name, "symlink")
            return None
        if entry.is_dir(follow_symlinks=False):
            return ChildEntry(entry.name, "dir")
        return None
    except FileNotFoundError:
        return ChildEntry(entry.name, "vanished", "removed during the walk")
    except OSError as e:
        return ChildEntry(entry.name, "unstattable", e.strerror or str(e))


def open_root(path: Path | str) -> DirectoryNode:
    """Return the node for the walk root.

    Raises:
        WalkError: The root is not a readable directory
    """
    root = Path(path).expanduser()
    try:
        root = root.resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise WalkError(f"Cannot access backup root {path}: {e}")
    if not root.is_dir():
        raise WalkError(f"Backup root {root} is not a directory")
    if not os.access(root, os.R_OK | os.X_OK):
        raise WalkError(f"Backup root {root} is not readable")
    node = DirectoryNode(root)
    try:
        node.child_dirs()
    except OSError as e:
        raise WalkError(f"Cannot list backup root {root}: {e}")
    return node
