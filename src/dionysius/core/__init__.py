"""Classification and dispatch engine for dionysius.

Walks a directory tree, decides which directories are push-able units and
turns them into backend commands that are previewed or executed.
"""

from .exclude import ExclusionRule, RuleOrigin, deciding_rule, matches
from .models import ClassificationResult, NodeResult, Verdict
from .repository import (
    BranchState,
    InspectionError,
    NotARepository,
    UninspectableRepository,
    compute_divergence,
    inspect_repository,
)

__all__ = [
    "ExclusionRule",
    "RuleOrigin",
    "deciding_rule",
    "matches",
    "ClassificationResult",
    "NodeResult",
    "Verdict",
    "BranchState",
    "InspectionError",
    "NotARepository",
    "UninspectableRepository",
    "compute_divergence",
    "inspect_repository",
]
