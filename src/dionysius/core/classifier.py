"""Directory tree classification.

Decides for every directory under the walk root whether it is excluded,
skipped, a plain container, a warning, or a push-able unit with a task.

The run has three phases:

1. Walk the tree in pre-order (children sorted by name), applying the
   hidden policy and the exclusion rules, reading local ``dionysius.toml``
   files and telling units (git repositories and directories with their own
   ``backend``) from plain containers. Containers are recursed into; units
   only when they set ``require_sub``.
2. Inspect the git units on a bounded worker pool.
3. Visit the nodes in post-order to check ``require_sub`` and build tasks.

Per-directory problems end up in the result, never as exceptions.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..config.loader import ConfigError, load_local_config
from ..config.resolver import ConfigTree, EffectiveConfig, resolve
from ..config.schema import Backend, OnUnsave
from .exclude import deciding_rule
from .models import ClassificationResult, NodeResult, Verdict
from .repository import (
    BranchState,
    NotARepository,
    UninspectableRepository,
    inspect_repository,
)
from .tasks import Task, TaskBuildError, TaskContext, build_task
from .walk import ChildEntry, DirectoryNode, open_root

logger = logging.getLogger(__name__)

Inspector = Callable[..., BranchState]


@dataclass(eq=False)
class _Visit:
    """Mutable bookkeeping for one directory while the run is in progress."""

    index: int
    node: DirectoryNode
    parent: int | None
    config: EffectiveConfig | None = None
    is_unit: bool = False
    verdict: Verdict | None = None
    reason: str | None = None
    state: BranchState | None = None
    task: Task | None = None
    children: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dropped: bool = False

    def finish(self, verdict: Verdict, reason: str | None = None) -> None:
        self.verdict = verdict
        self.reason = reason

    def warn(self, message: str) -> None:
        logger.warning("%s: %s", self.node.path, message)
        self.warnings.append(message)


class TaskClassifier:
    """Classify the directory tree under ``root`` for one push subcommand.

    Args:
        root: Walk root (path or opened node)
        tree: Declared settings
        command: ``git``, ``borg``, ``rsync`` or ``trigger``
        search_hidden: Walk hidden directories too
        workers: Size of the inspection pool
        inspector: Called as ``inspector(path, collapse_tracking=...)``
    """

    def __init__(
        self,
        root: Path | str | DirectoryNode,
        tree: ConfigTree,
        command: str = "trigger",
        search_hidden: bool = False,
        workers: int = 4,
        inspector: Inspector = inspect_repository,
    ):
        self.root = root if isinstance(root, DirectoryNode) else open_root(root)
        self.tree = tree
        self.command = command
        self.search_hidden = search_hidden
        self.workers = max(1, workers)
        self.inspector = inspector
        self._visits: list[_Visit] = []

    def classify(self) -> ClassificationResult:
        self._visits = []
        self._walk()
        self._inspect()
        self._finalize()
        result = ClassificationResult(root=self.root.path, command=self.command)
        result.nodes = [self._result(v) for v in self._visits if not v.dropped]
        logger.debug(
            "Classified %d directories, %d task(s)",
            len(result.nodes),
            len(result.tasks),
        )
        return result

    # Phase 1

    def _walk(self) -> None:
        # (node, directory entry, tree, parent index, parent is a unit)
        stack: list[
            tuple[DirectoryNode, ChildEntry | None, ConfigTree, int | None, bool]
        ] = [(self.root, None, self.tree, None, False)]
        while stack:
            node, entry, tree, parent, in_unit = stack.pop()
            visit = _Visit(index=len(self._visits), node=node, parent=parent)
            self._visits.append(visit)
            if parent is not None:
                self._visits[parent].children.append(visit.index)

            children = self._visit(visit, entry, tree, in_unit)
            if children is None:
                continue
            tree = children[0]
            # Reversed so that the stack pops children in name order.
            for child in reversed(children[1]):
                stack.append(
                    (node.child(child.name), child, tree, visit.index, visit.is_unit)
                )

    def _visit(
        self,
        visit: _Visit,
        entry: ChildEntry | None,
        tree: ConfigTree,
        in_unit: bool,
    ) -> tuple[ConfigTree, list[ChildEntry]] | None:
        """Classify one directory; return the children to walk, if any."""
        node = visit.node
        parent = self._visits[visit.parent] if visit.parent is not None else None

        if parent is not None and entry is not None:
            if entry.kind in ("broken", "unstattable"):
                visit.warn(entry.error or "cannot be examined")
                visit.finish(Verdict.EXCLUDED, entry.error)
                return None
            if entry.kind == "vanished":
                visit.finish(Verdict.SKIPPED, "vanished")
                return None
            if entry.kind == "symlink":
                visit.finish(Verdict.EXCLUDED, "symlink not followed")
                return None
            if node.is_hidden and not self.search_hidden:
                visit.finish(Verdict.EXCLUDED, "hidden")
                return None
            rule = deciding_rule(node.parts, parent.config.exclusion_rules)
            if rule is not None and not rule.negated:
                visit.finish(
                    Verdict.EXCLUDED,
                    f"matched '{rule.pattern or rule.native}' ({rule.origin.value})",
                )
                return None

        if node.local_config_path is not None:
            try:
                local, warnings = load_local_config(node.local_config_path)
            except ConfigError as e:
                visit.warn(str(e))
                visit.finish(Verdict.SKIPPED, "invalid local configuration")
                return None
            for warning in warnings:
                visit.warn(warning)
            tree = tree.with_node(node.parts, local)

        visit.config = config = resolve(node.parts, tree)
        visit.is_unit = node.is_repository_root or config.explicit_backend

        if visit.is_unit:
            if not config.selected_by(self.command):
                visit.finish(
                    Verdict.SKIPPED,
                    f"{config.backend.value} unit not selected by push {self.command}",
                )
                return None
            if not config.require_sub:
                return None
        elif in_unit:
            visit.finish(Verdict.SKIPPED, "plain directory inside a unit")
            return None

        try:
            entries = node.child_dirs()
        except FileNotFoundError:
            visit.finish(Verdict.SKIPPED, "vanished")
            return None
        except OSError as e:
            visit.warn(f"cannot list directory: {e.strerror or e}")
            visit.finish(Verdict.EXCLUDED, "unreadable")
            return None
        return tree, entries

    # Phase 2

    def _inspect(self) -> None:
        pending = [
            v
            for v in self._visits
            if v.is_unit and v.verdict is None and v.config.backend is Backend.GIT
        ]
        if not pending:
            return

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {
                executor.submit(
                    self.inspector,
                    v.node.path,
                    collapse_tracking=v.config.options["git"]["collapse_tracking"],
                ): v
                for v in pending
            }
            for future in as_completed(futures):
                visit = futures[future]
                try:
                    visit.state = future.result()
                except NotARepository:
                    visit.finish(Verdict.SKIPPED, "not a git repository")
                    continue
                except UninspectableRepository as e:
                    visit.warn(str(e))
                    visit.finish(Verdict.SKIPPED, "uninspectable")
                    continue
                self._judge_state(visit)

        for visit in self._visits:
            if visit.verdict is Verdict.WARN_DIVERGENT:
                self._drop_descendants(visit)

    def _judge_state(self, visit: _Visit) -> None:
        state = visit.state
        if state.divergent:
            visit.warn(f"diverged: {state.divergence_reason}")
            visit.finish(Verdict.WARN_DIVERGENT, state.divergence_reason)
        elif not state.local:
            visit.finish(Verdict.SKIPPED, "no branches")
        elif state.detached:
            visit.finish(Verdict.SKIPPED, "detached HEAD")
        elif state.current is None:
            visit.finish(Verdict.SKIPPED, "no current branch")
        elif state.diverged_from_upstream:
            visit.warn(
                f"{state.current} is {state.ahead} ahead and {state.behind} "
                f"behind {state.upstream}"
            )
            visit.finish(Verdict.SKIPPED, "diverged from upstream")
        elif (
            state.dirty
            and OnUnsave(visit.config.options["git"]["on_unsave"]) is OnUnsave.INTERRUPT
        ):
            visit.finish(Verdict.SKIPPED, "unsaved changes")

    def _drop_descendants(self, visit: _Visit) -> None:
        stack = list(visit.children)
        while stack:
            child = self._visits[stack.pop()]
            child.dropped = True
            stack.extend(child.children)

    # Phase 3

    def _finalize(self) -> None:
        nested: dict[int, list[tuple[str, ...]]] = {}
        # Reverse pre-order sees every node after all of its descendants.
        for visit in reversed(self._visits):
            if visit.dropped:
                continue
            units = []
            for index in visit.children:
                child = self._visits[index]
                if child.task is not None:
                    units.append(child.node.parts)
                else:
                    units.extend(nested.get(index, ()))
            nested[visit.index] = units

            if visit.verdict is not None:
                continue

            verdict = Verdict.TASK_EMITTED if visit.is_unit else Verdict.CONTAINER
            if visit.config.require_sub:
                failing = [
                    self._visits[i].node.name
                    for i in visit.children
                    if self._visits[i].task is None
                ]
                if failing:
                    reason = "not push-able: " + ", ".join(failing)
                    visit.warn(f"require_sub: {reason}")
                    visit.finish(Verdict.WARN_REQUIRE_SUB, reason)
                    verdict = Verdict.WARN_REQUIRE_SUB

            if not visit.is_unit:
                if visit.verdict is None:
                    visit.finish(Verdict.CONTAINER)
                continue

            ctx = TaskContext(
                path=visit.node.path,
                parts=visit.node.parts,
                config=visit.config,
                state=visit.state,
                nested_units=tuple(units),
            )
            try:
                visit.task = build_task(ctx, verdict)
            except TaskBuildError as e:
                visit.warn(str(e))
                visit.finish(Verdict.SKIPPED, str(e))
                continue
            if visit.verdict is None:
                visit.finish(verdict)

    def _result(self, visit: _Visit) -> NodeResult:
        return NodeResult(
            index=visit.index,
            path=visit.node.path,
            parts=visit.node.parts,
            verdict=visit.verdict,
            reason=visit.reason,
            task=visit.task,
            state=visit.state,
            warnings=tuple(visit.warnings),
        )
