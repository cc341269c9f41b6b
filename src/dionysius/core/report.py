"""Run outcomes, the run report and its rendering."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.text import Text

from .models import NodeResult, Verdict
from .tasks import Command, Task


class Mode(Enum):
    """Run mode."""

    PREVIEW = "preview"  # show the plan, run nothing
    EXECUTE = "execute"  # run the backend commands


class OutcomeKind(Enum):
    """What happened to one directory."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    WOULD_RUN = "would-run"


@dataclass(frozen=True)
class Outcome:
    """Result of dispatching (or not dispatching) one directory."""

    kind: OutcomeKind
    reason: Optional[str] = None
    commands: tuple[Command, ...] = ()
    output: str = ""

    @classmethod
    def succeeded(cls, task: Task, output: str = "") -> "Outcome":
        return cls(OutcomeKind.SUCCEEDED, commands=task.commands, output=output)

    @classmethod
    def failed(cls, reason: str, task: Task, output: str = "") -> "Outcome":
        return cls(OutcomeKind.FAILED, reason, task.commands, output)

    @classmethod
    def skipped(cls, reason: str) -> "Outcome":
        return cls(OutcomeKind.SKIPPED, reason)

    @classmethod
    def would_run(cls, task: Task) -> "Outcome":
        return cls(OutcomeKind.WOULD_RUN, commands=task.commands)


@dataclass(frozen=True)
class ReportEntry:
    """One line of the run report."""

    index: int
    path: str
    verdict: Verdict
    outcome: Outcome
    task: Optional[Task] = None
    warnings: tuple[str, ...] = ()

    @classmethod
    def for_node(cls, node: NodeResult, outcome: Outcome) -> "ReportEntry":
        return cls(
            index=node.index,
            path=node.display_path,
            verdict=node.verdict,
            outcome=outcome,
            task=node.task,
            warnings=node.warnings,
        )


@dataclass
class RunReport:
    """Complete run report.

    ``add`` may be called from several threads; ``entries`` is always in
    discovery order.
    """

    mode: Mode
    root: Path
    started_at: float = field(default_factory=time.time)
    completed_at: float = 0.0
    cancelled: bool = False
    _entries: list[ReportEntry] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(self, entry: ReportEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    @property
    def entries(self) -> list[ReportEntry]:
        with self._lock:
            return sorted(self._entries, key=lambda e: e.index)

    def _count(self, kind: OutcomeKind) -> int:
        return sum(1 for e in self.entries if e.outcome.kind is kind)

    @property
    def succeeded(self) -> int:
        return self._count(OutcomeKind.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeKind.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeKind.SKIPPED)

    @property
    def would_run(self) -> int:
        return self._count(OutcomeKind.WOULD_RUN)

    @property
    def warnings(self) -> int:
        return sum(1 for e in self.entries if e.verdict.is_warning)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def duration(self) -> float:
        if self.completed_at:
            return self.completed_at - self.started_at
        return time.time() - self.started_at


VERDICT_STYLES = {
    Verdict.EXCLUDED: "dim",
    Verdict.SKIPPED: "yellow",
    Verdict.CONTAINER: "dim",
    Verdict.WARN_DIVERGENT: "bold yellow",
    Verdict.WARN_REQUIRE_SUB: "bold yellow",
    Verdict.TASK_EMITTED: "green",
}

OUTCOME_STYLES = {
    OutcomeKind.SUCCEEDED: "green",
    OutcomeKind.FAILED: "bold red",
    OutcomeKind.SKIPPED: "yellow",
    OutcomeKind.WOULD_RUN: "cyan",
}


def _tail(text: str, lines: int = 5) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


def render_entry(entry: ReportEntry) -> Text:
    """Render one report line."""
    outcome = entry.outcome
    line = Text()
    line.append(f"{entry.verdict.value:<12}", style=VERDICT_STYLES[entry.verdict])
    line.append(" ")
    line.append(entry.path, style="bold")

    if outcome.kind is OutcomeKind.WOULD_RUN:
        line.append("  ")
        line.append(
            " && ".join(c.render() for c in outcome.commands),
            style=OUTCOME_STYLES[outcome.kind],
        )
    elif outcome.kind is OutcomeKind.SUCCEEDED:
        line.append("  ok", style=OUTCOME_STYLES[outcome.kind])
    elif outcome.kind is OutcomeKind.FAILED:
        line.append(f"  FAILED: {outcome.reason}", style=OUTCOME_STYLES[outcome.kind])
    elif outcome.reason and entry.verdict is not Verdict.CONTAINER:
        line.append(f"  ({outcome.reason})", style="dim")

    for warning in entry.warnings:
        line.append(f"\n    warning: {warning}", style="yellow")
    if outcome.kind is OutcomeKind.FAILED and outcome.output:
        for text in _tail(outcome.output).splitlines():
            line.append(f"\n    | {text}", style="dim")
    return line


def render_report(report: RunReport, console: Console) -> None:
    """Print one line per directory followed by a summary."""
    for entry in report.entries:
        console.print(render_entry(entry), soft_wrap=True)

    summary = Text()
    if report.mode is Mode.PREVIEW:
        summary.append(f"{report.would_run} task(s) would run", style="cyan")
    else:
        summary.append(f"{report.succeeded} succeeded", style="green")
        summary.append(", ")
        summary.append(
            f"{report.failed} failed", style="bold red" if report.failed else None
        )
    summary.append(f", {report.warnings} warning(s), {report.total} directories")
    if report.cancelled:
        summary.append("  (cancelled)", style="bold yellow")
    console.print(summary)
