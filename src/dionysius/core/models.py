"""Data models for directory classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .repository import BranchState
    from .tasks import Task


class Verdict(Enum):
    """Terminal state of a directory after classification."""

    EXCLUDED = "excluded"  # hidden, matched by a rule, or unreadable
    SKIPPED = "skipped"  # not selected or not safe, with a reason
    CONTAINER = "container"  # plain directory, children were walked
    WARN_DIVERGENT = "divergent"  # unsafe branch layout, no task
    WARN_REQUIRE_SUB = "require-sub"  # a required child is not push-able
    TASK_EMITTED = "task"  # push-able unit

    @property
    def is_warning(self) -> bool:
        return self in (Verdict.WARN_DIVERGENT, Verdict.WARN_REQUIRE_SUB)


@dataclass(frozen=True)
class NodeResult:
    """Classification of one directory.

    Attributes:
        index: Position in the pre-order walk, used to sort reports
        path: Absolute directory path
        parts: Path components below the walk root
        verdict: Terminal state
        reason: Why the directory was excluded, skipped or warned about
        task: Work item, set for push-able units
        state: Branch state of inspected git repositories
        warnings: Extra diagnostics recorded for the directory
    """

    index: int
    path: Path
    parts: tuple[str, ...]
    verdict: Verdict
    reason: str | None = None
    task: Task | None = None
    state: BranchState | None = None
    warnings: tuple[str, ...] = ()

    @property
    def display_path(self) -> str:
        return "/".join(self.parts) or "."


@dataclass
class ClassificationResult:
    """Every directory visited by one classification run, in walk order."""

    root: Path
    command: str
    nodes: list[NodeResult] = field(default_factory=list)

    @property
    def tasks(self) -> list[Task]:
        return [n.task for n in self.nodes if n.task is not None]

    @property
    def warnings(self) -> list[NodeResult]:
        return [n for n in self.nodes if n.verdict.is_warning or n.warnings]

    def by_path(self) -> dict[str, NodeResult]:
        return {n.display_path: n for n in self.nodes}
