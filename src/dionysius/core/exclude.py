"""Exclusion rules with gitignore semantics.

Rules are immutable and evaluated as an ordered tuple: the last rule that
matches a path decides, and a leading ``!`` re-includes the path. Each rule
remembers the directory it was declared in so that patterns read from a
nested configuration stay relative to that directory.

Borg style prefixed patterns (``sh:``, ``pp:``, ``pf:``, ``fm:``, ``re:``)
are accepted as well. The first three have a gitignore equivalent and take
part in the walk; ``fm:`` and ``re:`` only reach borg.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Sequence

from pathspec import GitIgnoreSpec

logger = logging.getLogger(__name__)

Parts = tuple[str, ...]


class RuleOrigin(Enum):
    """Where an exclusion rule was declared."""

    CLI = "cli"
    GLOBAL = "global"
    DIRECTORY = "directory"
    GITIGNORE = "gitignore"


class BorgStyle(Enum):
    """Pattern styles understood by ``borg create --exclude``."""

    FNMATCH = "fm"
    SHELL = "sh"
    REGEX = "re"
    PATH_PREFIX = "pp"
    PATH_FULL = "pf"


@dataclass(frozen=True)
class BorgPattern:
    """A borg pattern split into its style prefix and body."""

    style: BorgStyle
    body: str

    @classmethod
    def parse(cls, text: str) -> BorgPattern | None:
        """Parse ``text`` if it carries a borg style prefix, else return None."""
        prefix, sep, body = text.partition(":")
        if not sep or len(prefix) != 2:
            return None
        try:
            return cls(BorgStyle(prefix), body)
        except ValueError:
            return None

    def to_gitignore(self) -> str | None:
        """Return the equivalent gitignore pattern, or None if there is none.

        Borg patterns are matched against the whole path, so the converted
        pattern is anchored. Path prefixes become directory patterns.
        """
        body = self.body.strip("/")
        if not body or self.style in (BorgStyle.FNMATCH, BorgStyle.REGEX):
            return None
        if self.style is BorgStyle.PATH_PREFIX:
            return f"/{body}/"
        return f"/{body}"

    def __str__(self) -> str:
        return f"{self.style.value}:{self.body}"


@dataclass(frozen=True)
class ExclusionRule:
    """One gitignore style pattern and the directory it is relative to.

    Attributes:
        pattern: Gitignore pattern, possibly negated with a leading ``!``;
            empty when the rule only has a borg form
        origin: Where the rule was declared
        base: Directory (path parts below the walk root) the pattern is
            relative to
        native: Borg pattern text when the rule was written in borg syntax
    """

    pattern: str
    origin: RuleOrigin
    base: Parts = ()
    native: str | None = None

    @classmethod
    def parse(
        cls, text: str, origin: RuleOrigin, base: Sequence[str] = ()
    ) -> ExclusionRule | None:
        """Build a rule from a configured pattern; blank lines and comments give None."""
        text = text.strip()
        if not text or text.startswith("#"):
            return None
        borg = BorgPattern.parse(text)
        if borg is not None:
            return cls(borg.to_gitignore() or "", origin, tuple(base), native=text)
        return cls(text, origin, tuple(base))

    @property
    def negated(self) -> bool:
        return self.pattern.startswith("!")

    @property
    def body(self) -> str:
        """Pattern without its negation prefix."""
        return self.pattern[1:] if self.negated else self.pattern

    @property
    def anchored(self) -> bool:
        """Whether the pattern only matches relative to its base directory."""
        return "/" in self.body.rstrip("/")

    @property
    def dir_only(self) -> bool:
        return self.body.endswith("/")

    def rooted_body(self) -> str:
        """Return the pattern body rewritten relative to the walk root."""
        core = self.body.rstrip("/").lstrip("/")
        if not core:
            return ""
        if self.anchored:
            rooted = "/" + "/".join((*self.base, core))
        elif self.base:
            rooted = "/" + "/".join((*self.base, "**", core))
        else:
            rooted = core
        return rooted + "/" if self.dir_only else rooted

    def rooted_pattern(self) -> str:
        body = self.rooted_body()
        if not body:
            return ""
        return "!" + body if self.negated else body


@lru_cache(maxsize=4096)
def _compile(rooted_body: str) -> GitIgnoreSpec:
    return GitIgnoreSpec.from_lines([rooted_body])


def _path_text(parts: Sequence[str], is_dir: bool) -> str:
    text = "/".join(parts)
    return text + "/" if is_dir else text


def deciding_rule(
    parts: Sequence[str], rules: Sequence[ExclusionRule], is_dir: bool = True
) -> ExclusionRule | None:
    """Return the last rule in ``rules`` matching the path, or None."""
    if not parts:
        return None
    path = _path_text(parts, is_dir)
    for rule in reversed(rules):
        body = rule.rooted_body()
        if body and _compile(body).match_file(path):
            return rule
    return None


def matches(
    parts: Sequence[str], rules: Sequence[ExclusionRule], is_dir: bool = True
) -> bool:
    """Return True when the path is excluded by ``rules``."""
    rule = deciding_rule(parts, rules, is_dir)
    return rule is not None and not rule.negated


def is_hidden(name: str) -> bool:
    return name.startswith(".") and name not in (".", "..")


def read_gitignore(path: Path | str) -> list[str]:
    """Read the patterns of a ``.gitignore`` file, skipping comments and blanks.

    A missing or unreadable file yields no patterns.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.debug("No usable gitignore at %s: %s", path, e)
        return []
    return [
        line.rstrip()
        for line in lines
        if line.strip() and not line.lstrip().startswith("#")
    ]


def rules_from_patterns(
    patterns: Iterable[str], origin: RuleOrigin, base: Sequence[str] = ()
) -> tuple[ExclusionRule, ...]:
    """Parse several patterns at once, dropping blanks and comments."""
    rules = (ExclusionRule.parse(p, origin, base) for p in patterns)
    return tuple(r for r in rules if r is not None)


def rebase_rule(rule: ExclusionRule, unit_parts: Sequence[str]) -> str | None:
    """Rewrite ``rule`` relative to the unit directory at ``unit_parts``.

    Returns the gitignore pattern as seen from inside the unit (anchored
    patterns start with ``/``), or None when the rule cannot match anything
    inside the unit.
    """
    rooted = rule.rooted_body()
    if not rooted:
        return None
    prefix = "!" if rule.negated else ""
    suffix = "/" if rule.dir_only else ""
    if not rooted.startswith("/"):
        return prefix + rooted

    segments = rooted.strip("/").split("/")
    unit = list(unit_parts)
    i = 0
    while unit:
        if i >= len(segments):
            # The pattern names the unit itself or one of its ancestors.
            return None
        seg = segments[i]
        if seg == "**":
            break
        if not fnmatchcase(unit[0], seg):
            return None
        unit.pop(0)
        i += 1

    if i < len(segments) and segments[i] == "**":
        # Any depth below the unit: the rest is unanchored inside it.
        rest = "/".join(segments[i + 1 :])
        if not rest:
            return None
        if "/" in rest:
            rest = "**/" + rest
        return prefix + rest + suffix

    rest = "/".join(segments[i:])
    if not rest:
        return None
    return prefix + "/" + rest + suffix


def gitignore_to_borg(pattern: str, source: Path | str) -> str | None:
    """Convert a unit relative gitignore pattern to a borg ``sh:`` pattern.

    Borg has no negation, so negated patterns give None.
    """
    if not pattern or pattern.startswith("!"):
        return None
    core = pattern.strip("/")
    if not core:
        return None
    source = str(source).rstrip("/")
    if pattern.startswith("/") or "/" in pattern.rstrip("/"):
        return f"sh:{source}/{core}"
    return f"sh:{source}/**/{core}"
