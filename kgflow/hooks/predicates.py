"""
Predicate evaluation.

Each function evaluates one predicate variant against the store and
returns ``(holds, evidence)``. Evaluation never mutates the store; the
ResultDelta fingerprint state is owned by the HookEngine.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from rdflib import Literal, URIRef
from rdflib.namespace import RDF, XSD

from kgflow.store.quadstore import QuadStore
from kgflow.store.sparql import QueryResult
from kgflow.store.terms import canonical_key, canonical_text

from .models import (
    AskPredicate,
    ShapeConstraint,
    ShapePredicate,
    ThresholdPredicate,
)


def fingerprint(result: QueryResult) -> str:
    """
    Canonical hash of a result.

    Variables are taken in sorted order; rows are sorted by the canonical
    term key (IRIs before literals, literals by datatype, lexical form and
    language) so row order and variable order do not matter.
    """
    if result.type == "ask":
        payload: Any = {"ask": bool(result.boolean)}
    elif result.type in ("construct", "describe"):
        quads = sorted((q.triple for q in result.quads), key=lambda t: tuple(canonical_key(x) for x in t))
        payload = [[canonical_text(t) for t in triple] for triple in quads]
    else:
        variables = sorted(result.variables)
        rows = sorted(result.rows, key=lambda row: tuple(canonical_key(row.get(v)) for v in variables))
        payload = {
            "variables": variables,
            "rows": [[canonical_text(row.get(v)) for v in variables] for row in rows],
        }
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def evaluate_ask(predicate: AskPredicate, store: QuadStore) -> tuple[bool, dict[str, Any]]:
    result = store.query(predicate.query)
    holds = bool(result.boolean) if result.type == "ask" else result.count > 0
    return holds, {"type": "ask", "result": holds}


def evaluate_threshold(predicate: ThresholdPredicate, store: QuadStore) -> tuple[bool, dict[str, Any]]:
    result = store.query(predicate.query)
    count = (1 if result.boolean else 0) if result.type == "ask" else result.count
    holds = predicate.holds(count)
    return holds, {
        "type": "threshold",
        "count": count,
        "bounds": [{"operator": op, "value": value} for op, value in predicate.bounds],
    }


def _focus_nodes(constraint: ShapeConstraint, store: QuadStore) -> list[URIRef]:
    nodes: dict[Any, None] = {URIRef(n): None for n in constraint.target_nodes}
    if constraint.target_class:
        for subject in store.subjects(RDF.type, URIRef(constraint.target_class)):
            nodes.setdefault(subject, None)
    return list(nodes)


def _literal_datatype(value: Any) -> str | None:
    if not isinstance(value, Literal):
        return None
    if value.datatype is not None:
        return str(value.datatype)
    return str(RDF.langString) if value.language else str(XSD.string)


def check_constraint(constraint: ShapeConstraint, store: QuadStore) -> list[dict[str, Any]]:
    """Violations of one constraint; empty when it holds."""
    path = URIRef(constraint.path)
    violations = []
    for focus in _focus_nodes(constraint, store):
        values = store.objects(focus, path)
        problem: str | None = None
        if constraint.check == "minCount" and len(values) < constraint.value:
            problem = f"{len(values)} values, expected at least {constraint.value}"
        elif constraint.check == "maxCount" and len(values) > constraint.value:
            problem = f"{len(values)} values, expected at most {constraint.value}"
        elif constraint.check == "hasValue" and constraint.value not in values:
            problem = f"missing required value {constraint.value}"
        elif constraint.check == "datatype":
            wrong = [v for v in values if _literal_datatype(v) != str(constraint.value)]
            if wrong:
                problem = f"{len(wrong)} values not of datatype {constraint.value}"
        elif constraint.check == "in":
            allowed = set(constraint.value)
            outside = [v for v in values if v not in allowed]
            if outside:
                problem = f"values outside the allowed set: {', '.join(str(v) for v in outside)}"
        if problem is not None:
            violations.append(
                {"focus": str(focus), "path": constraint.path, "check": constraint.check, "message": problem}
            )
    return violations


def evaluate_shape(predicate: ShapePredicate, store: QuadStore) -> tuple[bool, dict[str, Any]]:
    violations: list[dict[str, Any]] = []
    for constraint in predicate.constraints:
        violations.extend(check_constraint(constraint, store))
    return not violations, {
        "type": "shape",
        "constraints": len(predicate.constraints),
        "violations": violations,
    }


__all__ = [
    "check_constraint",
    "evaluate_ask",
    "evaluate_shape",
    "evaluate_threshold",
    "fingerprint",
]
