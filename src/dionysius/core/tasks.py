"""Backend specific work items.

A ``Task`` carries the fully formed commands for one push-able directory;
running them needs no further interpretation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from .. import encode_path_for_name
from ..__util__ import shell_join
from ..config.resolver import EffectiveConfig
from ..config.schema import Backend, OnUnsave
from .exclude import (
    ExclusionRule,
    RuleOrigin,
    gitignore_to_borg,
    read_gitignore,
    rebase_rule,
    rules_from_patterns,
)
from .models import Verdict
from .repository import BranchState

logger = logging.getLogger(__name__)


class TaskBuildError(Exception):
    """A push-able directory lacks what its backend needs."""

    pass


@dataclass(frozen=True)
class Command:
    """A program invocation.

    Attributes:
        program: Executable name
        args: Arguments after the program name
        cwd: Working directory, None for the caller's
    """

    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def render(self) -> str:
        text = shell_join(self.argv)
        if self.cwd is not None:
            return f"(cd {shell_join([str(self.cwd)])} && {text})"
        return text


@dataclass(frozen=True)
class Task:
    """Immutable work item for one push-able directory.

    Attributes:
        path: Directory to back up
        parts: Path components below the walk root
        backend: Backup mechanism
        commands: Commands to run, in order
        target: Destination key; tasks sharing it never run concurrently
        verdict: ``TASK_EMITTED`` or ``WARN_REQUIRE_SUB``
    """

    path: Path
    parts: tuple[str, ...]
    backend: Backend
    commands: tuple[Command, ...]
    target: str
    verdict: Verdict = Verdict.TASK_EMITTED

    @property
    def display_path(self) -> str:
        return "/".join(self.parts) or "."

    def render(self) -> str:
        return " && ".join(c.render() for c in self.commands)


@dataclass(frozen=True)
class TaskContext:
    """What the classifier knows about a unit when building its task."""

    path: Path
    parts: tuple[str, ...]
    config: EffectiveConfig
    state: BranchState | None = None
    nested_units: tuple[tuple[str, ...], ...] = field(default_factory=tuple)

    @property
    def name(self) -> str:
        return encode_path_for_name(Path(*self.parts)) if self.parts else self.path.name

    def nested_relative(self) -> list[str]:
        """Paths of nested units relative to this unit."""
        depth = len(self.parts)
        return ["/".join(p[depth:]) for p in self.nested_units]

    def rebased_patterns(
        self, extra: Iterable[ExclusionRule] = ()
    ) -> list[str]:
        patterns = []
        for rule in (*self.config.exclusion_rules, *extra):
            if not rule.pattern:
                continue
            rebased = rebase_rule(rule, self.parts)
            if rebased is not None:
                patterns.append(rebased)
        return patterns


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _git_pathspec(pattern: str) -> str | None:
    if pattern.startswith("!"):
        return None
    core = pattern.strip("/")
    if not core:
        return None
    if pattern.startswith("/") or "/" in pattern.rstrip("/"):
        return core
    return f"**/{core}"


def build_git_task(ctx: TaskContext, verdict: Verdict) -> Task:
    options = ctx.config.options["git"]
    state = ctx.state
    commands = []

    on_unsave = OnUnsave(options["on_unsave"])
    if state is not None and state.dirty and on_unsave is OnUnsave.SAVE:
        excludes = [f":(exclude){p}" for p in ctx.nested_relative()]
        for pattern in ctx.rebased_patterns():
            spec = _git_pathspec(pattern)
            if spec is not None:
                excludes.append(f":(exclude,glob){spec}")
        commands.append(
            Command("git", ("add", "--all", "--", ".", *_dedupe(excludes)), ctx.path)
        )
        commands.append(
            Command("git", ("commit", "-m", options["autosave_message"]), ctx.path)
        )

    remote = options["remote"]
    if remote and state is not None and state.current:
        push = Command("git", ("push", remote, state.current), ctx.path)
    else:
        push = Command("git", ("push",), ctx.path)
    commands.append(push)

    return Task(
        path=ctx.path,
        parts=ctx.parts,
        backend=Backend.GIT,
        commands=tuple(commands),
        target=f"git:{ctx.path}",
        verdict=verdict,
    )


def build_borg_task(ctx: TaskContext, verdict: Verdict) -> Task:
    options = ctx.config.options["borg"]
    target = options["target"]
    if not target:
        raise TaskBuildError("borg backend has no target")

    extra: Sequence[ExclusionRule] = ()
    if "git" in options["extra_exclude_mode"]:
        extra = rules_from_patterns(
            read_gitignore(ctx.path / ".gitignore"), RuleOrigin.GITIGNORE, ctx.parts
        )

    excludes = [f"pp:{ctx.path / p}" for p in ctx.nested_relative()]
    for pattern in ctx.rebased_patterns(extra):
        converted = gitignore_to_borg(pattern, ctx.path)
        if converted is None:
            logger.debug("No borg form for pattern %r in %s", pattern, ctx.path)
            continue
        excludes.append(converted)
    for rule in ctx.config.exclusion_rules:
        if rule.native and not rule.pattern:
            excludes.append(rule.native)

    args = ["create", "--stats", "--compression", options["compression"]]
    if options["one_file_system"]:
        args.append("--one-file-system")
    for pattern in _dedupe(excludes):
        args.extend(("--exclude", pattern))

    if "::" in target:
        archive = target
    else:
        archive = f"{target}::{{hostname}}-{ctx.name}-{{now}}"
    args.extend((archive, str(ctx.path)))

    return Task(
        path=ctx.path,
        parts=ctx.parts,
        backend=Backend.BORG,
        commands=(Command("borg", tuple(args)),),
        target=f"borg:{target.split('::', 1)[0]}",
        verdict=verdict,
    )


def build_rsync_task(ctx: TaskContext, verdict: Verdict) -> Task:
    options = ctx.config.options["rsync"]
    target = options["target"]
    if not target:
        raise TaskBuildError("rsync backend has no target")

    args = list(options["flags"])
    if options["delete"]:
        args.append("--delete")
    filters = [("--exclude", f"/{p}/") for p in ctx.nested_relative()]
    # rsync stops at the first matching filter, so the last gitignore rule goes first.
    for pattern in reversed(ctx.rebased_patterns()):
        if pattern.startswith("!"):
            filters.append(("--include", pattern[1:]))
        else:
            filters.append(("--exclude", pattern))
    for flag, pattern in dict.fromkeys(filters):
        args.extend((flag, pattern))

    args.extend((f"{ctx.path}/", f"{target.rstrip('/')}/{ctx.name}/"))
    return Task(
        path=ctx.path,
        parts=ctx.parts,
        backend=Backend.RSYNC,
        commands=(Command("rsync", tuple(args)),),
        target=f"rsync:{target}",
        verdict=verdict,
    )


BUILDERS = {
    Backend.GIT: build_git_task,
    Backend.BORG: build_borg_task,
    Backend.RSYNC: build_rsync_task,
}


def build_task(ctx: TaskContext, verdict: Verdict = Verdict.TASK_EMITTED) -> Task:
    """Build the task for a push-able unit.

    Raises:
        TaskBuildError: The backend options are incomplete
    """
    return BUILDERS[ctx.config.backend](ctx, verdict)
