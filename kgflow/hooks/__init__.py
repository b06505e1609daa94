"""
kgflow Hooks

Hooks discovered from the graph, their predicate evaluation, and the
HookEngine that fires them on each tick.
"""

from .discovery import discover, find_hook, hook_iris, read_hook
from .engine import HookAction, HookEngine
from .models import (
    AskPredicate,
    Evaluation,
    Hook,
    HookPredicate,
    PredicateKind,
    ResultDeltaPredicate,
    ShapeConstraint,
    ShapePredicate,
    ThresholdPredicate,
)
from .predicates import check_constraint, fingerprint

__all__ = [
    "AskPredicate",
    "Evaluation",
    "Hook",
    "HookAction",
    "HookEngine",
    "HookPredicate",
    "PredicateKind",
    "ResultDeltaPredicate",
    "ShapeConstraint",
    "ShapePredicate",
    "ThresholdPredicate",
    "check_constraint",
    "discover",
    "find_hook",
    "fingerprint",
    "hook_iris",
    "read_hook",
]
