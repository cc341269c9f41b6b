"""Git working tree inspection.

Reads branch topology, upstream distance and working tree state with
pygit2 and decides whether a repository is safe to push automatically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import pygit2
from pygit2.enums import FileStatus, RepositoryOpenFlag

logger = logging.getLogger(__name__)

INDEX_CHANGES = (
    FileStatus.INDEX_NEW
    | FileStatus.INDEX_MODIFIED
    | FileStatus.INDEX_DELETED
    | FileStatus.INDEX_RENAMED
    | FileStatus.INDEX_TYPECHANGE
)
WORKDIR_CHANGES = (
    FileStatus.WT_NEW
    | FileStatus.WT_MODIFIED
    | FileStatus.WT_DELETED
    | FileStatus.WT_RENAMED
    | FileStatus.WT_TYPECHANGE
)


class InspectionError(Exception):
    """A directory could not be inspected as a repository."""

    pass


class NotARepository(InspectionError):
    """The directory is not the root of a git working tree."""

    pass


class UninspectableRepository(InspectionError):
    """Repository metadata is present but its state cannot be read."""

    pass


@dataclass(frozen=True)
class BranchState:
    """Branch topology and working tree state of one repository.

    Attributes:
        local: Local branch names
        remote: Remote name to the branch names it carries
        tracking: Local branch to its upstream, ``remote/name`` for remote
            upstreams or a bare name for local ones
        current: Checked out branch, None when HEAD is detached or unborn
        detached: HEAD points at a commit instead of a branch
        ahead: Commits on the current branch missing from its upstream
        behind: Commits on the upstream missing from the current branch
        workdir_dirty: Untracked or modified files in the working tree
        index_dirty: Staged changes
        divergent: More than one independent line of history
        divergence_reason: Why the repository is divergent
    """

    local: frozenset[str] = frozenset()
    remote: Mapping[str, frozenset[str]] = field(default_factory=dict)
    tracking: Mapping[str, str] = field(default_factory=dict)
    current: str | None = None
    detached: bool = False
    ahead: int = 0
    behind: int = 0
    workdir_dirty: bool = False
    index_dirty: bool = False
    divergent: bool = False
    divergence_reason: str | None = None

    @property
    def dirty(self) -> bool:
        return self.workdir_dirty or self.index_dirty

    @property
    def upstream(self) -> str | None:
        if self.current is None:
            return None
        return self.tracking.get(self.current)

    @property
    def diverged_from_upstream(self) -> bool:
        """The current branch and its upstream both have commits the other lacks."""
        return self.ahead > 0 and self.behind > 0

    def summary(self) -> str:
        """Short status flags: branch, upstream distance and dirtiness."""
        flags = []
        if self.detached:
            flags.append("detached")
        elif self.current:
            flags.append(self.current)
        if self.ahead:
            flags.append(f"ahead {self.ahead}")
        if self.behind:
            flags.append(f"behind {self.behind}")
        if self.index_dirty:
            flags.append("staged")
        if self.workdir_dirty:
            flags.append("unsaved")
        if self.divergent:
            flags.append("diverged")
        return ", ".join(flags) or "clean"


class _Components:
    """Union-find over branch identifiers."""

    def __init__(self):
        self._parent: dict[str, str] = {}

    def add(self, item: str) -> None:
        self._parent.setdefault(item, item)

    def find(self, item: str) -> str:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Smaller key wins so the result is independent of edge order.
            if rb < ra:
                ra, rb = rb, ra
            self._parent[rb] = ra


def compute_divergence(
    local: frozenset[str] | set[str],
    remote: Mapping[str, frozenset[str] | set[str]],
    tracking: Mapping[str, str],
    collapse_tracking: bool = True,
) -> str | None:
    """Return why a branch layout is divergent, or None when it is not.

    A layout is divergent when it holds more than one independent local
    line or more than one independent line on a single remote.

    With ``collapse_tracking`` a branch and the branch it tracks count as one
    line, transitively. Without it every branch counts on its own.
    """
    if not collapse_tracking:
        if len(local) > 1:
            return f"{len(local)} local branches"
        for name, branches in sorted(remote.items()):
            if len(branches) > 1:
                return f"{len(branches)} branches on remote '{name}'"
        return None

    components = _Components()
    for branch in local:
        components.add(f"L:{branch}")
    for name, branches in remote.items():
        for branch in branches:
            components.add(f"R:{name}/{branch}")
    for branch, upstream in tracking.items():
        if branch not in local:
            continue
        if upstream in local:
            components.union(f"L:{branch}", f"L:{upstream}")
        else:
            components.union(f"L:{branch}", f"R:{upstream}")

    local_lines = {components.find(f"L:{b}") for b in local}
    if len(local_lines) > 1:
        return f"{len(local_lines)} independent local branches"
    for name, branches in sorted(remote.items()):
        lines = {components.find(f"R:{name}/{b}") for b in branches}
        if len(lines) > 1:
            return f"{len(lines)} independent branches on remote '{name}'"
    return None


def is_repository_root(path: Path | str) -> bool:
    """Whether ``path`` holds git metadata (a ``.git`` directory or gitdir file)."""
    marker = Path(path) / ".git"
    try:
        return marker.is_dir() or marker.is_file()
    except OSError:
        return False


def _split_remote_branch(shorthand: str, remotes: list[str]) -> tuple[str, str] | None:
    # Longest remote name first so "a/b" wins over "a".
    for name in sorted(remotes, key=len, reverse=True):
        if shorthand.startswith(name + "/"):
            return name, shorthand[len(name) + 1 :]
    return None


def _read_state(repo: pygit2.Repository, collapse_tracking: bool) -> BranchState:
    remote_names = [r.name for r in repo.remotes]
    local = frozenset(repo.branches.local)

    remote: dict[str, set[str]] = {name: set() for name in remote_names}
    for shorthand in repo.branches.remote:
        split = _split_remote_branch(shorthand, remote_names)
        if split is None or split[1] == "HEAD":
            continue
        remote[split[0]].add(split[1])

    tracking: dict[str, str] = {}
    for name in local:
        upstream = repo.branches.local[name].upstream
        if upstream is not None:
            tracking[name] = upstream.shorthand

    detached = repo.head_is_detached
    current = None
    ahead = behind = 0
    if not detached and not repo.head_is_unborn:
        current = repo.head.shorthand
        upstream_name = tracking.get(current)
        if upstream_name is not None:
            head = repo.branches.local[current].upstream
            ahead, behind = repo.ahead_behind(repo.head.target, head.target)

    index_dirty = workdir_dirty = False
    for flags in repo.status().values():
        flags = FileStatus(flags)
        if flags & INDEX_CHANGES:
            index_dirty = True
        if flags & WORKDIR_CHANGES:
            workdir_dirty = True

    frozen_remote = {name: frozenset(b) for name, b in remote.items()}
    reason = compute_divergence(
        local, frozen_remote, tracking, collapse_tracking
    )
    return BranchState(
        local=local,
        remote=frozen_remote,
        tracking=tracking,
        current=current,
        detached=detached,
        ahead=ahead,
        behind=behind,
        workdir_dirty=workdir_dirty,
        index_dirty=index_dirty,
        divergent=reason is not None,
        divergence_reason=reason,
    )


def inspect_repository(path: Path | str, collapse_tracking: bool = True) -> BranchState:
    """Inspect the git working tree rooted at ``path``.

    Raises:
        NotARepository: No git metadata at ``path``
        UninspectableRepository: The metadata exists but cannot be read
    """
    path = Path(path)
    if not is_repository_root(path):
        raise NotARepository(f"{path} is not a git working tree")

    try:
        repo = pygit2.Repository(str(path), RepositoryOpenFlag.NO_SEARCH)
        if repo.is_bare or repo.workdir is None:
            raise UninspectableRepository(f"{path}: repository has no working tree")
        state = _read_state(repo, collapse_tracking)
    except UninspectableRepository:
        raise
    except (pygit2.GitError, KeyError, ValueError, OSError) as e:
        raise UninspectableRepository(f"{path}: {e}") from e

    logger.debug("Inspected %s: %s", path, state.summary())
    return state
