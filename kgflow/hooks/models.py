"""
Hook definitions and predicate variants.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class PredicateKind(str, Enum):
    ASK = "Ask"
    THRESHOLD = "Threshold"
    RESULT_DELTA = "ResultDelta"
    SHAPE = "ShapeConformance"


COMPARATORS = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "=": operator.eq,
    "==": operator.eq,
}

# Aliases accepted for hk:operator
OPERATOR_ALIASES = {"ge": ">=", "gt": ">", "le": "<=", "lt": "<", "eq": "=", "≥": ">=", "≤": "<="}


@dataclass
class AskPredicate:
    query: str
    kind: PredicateKind = PredicateKind.ASK


@dataclass
class ThresholdPredicate:
    """Row count of ``query`` compared against each ``(operator, value)`` bound."""

    query: str
    bounds: list[tuple[str, float]] = field(default_factory=list)
    kind: PredicateKind = PredicateKind.THRESHOLD

    def holds(self, count: int) -> bool:
        return all(COMPARATORS[op](count, value) for op, value in self.bounds)


@dataclass
class ResultDeltaPredicate:
    query: str
    kind: PredicateKind = PredicateKind.RESULT_DELTA


@dataclass
class ShapeConstraint:
    """
    One constraint on the values of ``path`` for a set of focus nodes.

    ``check`` is one of minCount, maxCount, hasValue, datatype or in.
    Focus nodes are ``target_nodes`` plus every instance of ``target_class``.
    """

    path: str
    check: str
    value: Any
    target_class: str | None = None
    target_nodes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        value = [str(v) for v in self.value] if isinstance(self.value, list) else self.value
        return {
            "path": self.path,
            "check": self.check,
            "value": value if isinstance(value, (int, float, list)) else str(value),
            "targetClass": self.target_class,
            "targetNodes": list(self.target_nodes),
        }


@dataclass
class ShapePredicate:
    constraints: list[ShapeConstraint] = field(default_factory=list)
    kind: PredicateKind = PredicateKind.SHAPE


HookPredicate = Union[AskPredicate, ThresholdPredicate, ResultDeltaPredicate, ShapePredicate]


@dataclass
class Hook:
    id: str
    iri: str
    title: str = ""
    predicate: HookPredicate | None = None
    pipelines: list[str] = field(default_factory=list)
    lock: str | None = None

    @property
    def is_level(self) -> bool:
        """Level predicates stay true while the store keeps satisfying them."""
        return self.predicate is not None and self.predicate.kind != PredicateKind.RESULT_DELTA

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "iri": self.iri,
            "title": self.title,
            "predicate": self.predicate.kind.value if self.predicate else None,
            "pipelines": list(self.pipelines),
            "lock": self.lock,
        }


@dataclass
class Evaluation:
    hook_id: str
    fired: bool
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"hookId": self.hook_id, "fired": self.fired, "evidence": dict(self.evidence)}


__all__ = [
    "COMPARATORS",
    "OPERATOR_ALIASES",
    "AskPredicate",
    "Evaluation",
    "Hook",
    "HookPredicate",
    "PredicateKind",
    "ResultDeltaPredicate",
    "ShapeConstraint",
    "ShapePredicate",
    "ThresholdPredicate",
]
