"""
Hook discovery.

Reads every ``hk:Hook`` in the store, in insertion order, together with its
predicate, ordered pipelines and optional workflow lock.

    ex:release a hk:Hook ;
        dct:title "Release report" ;
        hk:hasPredicate [ a hk:Threshold ;
                          hk:query "SELECT ?c WHERE { ?c a git:Commit }" ;
                          hk:min 2 ] ;
        hk:orderedPipelines ( ex:reportPipeline ) ;
        wf:lock "build" .

Hooks that cannot be read are skipped with a warning by ``discover``;
``read_hook`` raises ``ParseError`` for them.
"""

from __future__ import annotations

import logging

from rdflib import Literal, URIRef
from rdflib.namespace import DCTERMS, RDF, RDFS
from rdflib.term import Node

from kgflow.errors import ParseError
from kgflow.store.quadstore import QuadStore
from kgflow.store.turtle import UriResolver
from kgflow.vocabulary import HK, WF, local_name

from .models import (
    COMPARATORS,
    OPERATOR_ALIASES,
    AskPredicate,
    Hook,
    HookPredicate,
    ResultDeltaPredicate,
    ShapeConstraint,
    ShapePredicate,
    ThresholdPredicate,
)

logger = logging.getLogger(__name__)

SHAPE_CHECKS = {
    HK.minCount: "minCount",
    HK.maxCount: "maxCount",
    HK.hasValue: "hasValue",
    HK.datatype: "datatype",
    HK["in"]: "in",
}


def hook_iris(store: QuadStore) -> list[Node]:
    return store.subjects(RDF.type, HK.Hook)


def find_hook(store: QuadStore, hook_id: str) -> Node | None:
    """Hook IRI whose full IRI or local name equals ``hook_id``."""
    for iri in hook_iris(store):
        if str(iri) == hook_id or local_name(str(iri)) == hook_id:
            return iri
    return None


def discover(store: QuadStore, resolver: UriResolver | None = None) -> list[Hook]:
    hooks = []
    for iri in hook_iris(store):
        try:
            hooks.append(read_hook(store, iri, resolver))
        except ParseError as exc:
            logger.warning(f"[hooks] skipping hook {iri}: {exc}")
    logger.debug(f"[hooks] discovered {len(hooks)} hooks")
    return hooks


def read_hook(store: QuadStore, iri: Node, resolver: UriResolver | None = None) -> Hook:
    title = store.value(iri, DCTERMS.title) or store.value(iri, RDFS.label)
    lock = store.value(iri, WF.lock)
    predicate_node = store.value(iri, HK.hasPredicate)
    return Hook(
        id=local_name(str(iri)),
        iri=str(iri),
        title=str(title) if title is not None else "",
        predicate=read_predicate(store, predicate_node, resolver) if predicate_node is not None else None,
        pipelines=[str(p) for p in read_ordered(store, iri, HK.orderedPipelines)],
        lock=str(lock) if lock is not None else None,
    )


def read_ordered(store: QuadStore, subject: Node, predicate: Node) -> list[Node]:
    """Values of a predicate that holds an RDF list, or plain repeated values."""
    members: list[Node] = []
    for value in store.objects(subject, predicate):
        if store.is_list(value):
            members.extend(store.items(value))
        else:
            members.append(value)
    return members


def predicate_query(store: QuadStore, node: Node, resolver: UriResolver | None = None) -> str:
    query = store.value(node, HK.query)
    if query is None:
        query = store.value(node, WF.text)
        if query is not None:
            logger.warning(f"[hooks] {node}: wf:text on a hook predicate is deprecated, use hk:query")
    if query is None:
        path = store.value(node, WF.path)
        if path is not None:
            resolver = resolver or UriResolver()
            try:
                return resolver.read_text(str(path))
            except OSError as exc:
                raise ParseError(f"Cannot read predicate query {path}: {exc}") from exc
    if query is None:
        raise ParseError(f"Predicate {node} has no hk:query")
    return str(query)


def _number(value: Node, what: str) -> float:
    if not isinstance(value, Literal):
        raise ParseError(f"{what} must be a number, got {value}")
    try:
        return float(value.toPython())
    except (TypeError, ValueError) as exc:
        raise ParseError(f"{what} must be a number, got {value}") from exc


def read_predicate(store: QuadStore, node: Node, resolver: UriResolver | None = None) -> HookPredicate:
    types = store.objects(node, RDF.type)

    if HK.Ask in types:
        return AskPredicate(query=predicate_query(store, node, resolver))

    if HK.ResultDelta in types:
        return ResultDeltaPredicate(query=predicate_query(store, node, resolver))

    if HK.Threshold in types:
        bounds: list[tuple[str, float]] = []
        threshold = store.value(node, HK.threshold)
        if threshold is not None:
            op = str(store.value(node, HK.operator) or ">=").strip()
            op = OPERATOR_ALIASES.get(op, op)
            if op not in COMPARATORS:
                raise ParseError(f"Threshold {node} has unknown operator '{op}'")
            bounds.append((op, _number(threshold, "hk:threshold")))
        minimum = store.value(node, HK.min)
        if minimum is not None:
            bounds.append((">=", _number(minimum, "hk:min")))
        maximum = store.value(node, HK.max)
        if maximum is not None:
            bounds.append(("<=", _number(maximum, "hk:max")))
        if not bounds:
            raise ParseError(f"Threshold {node} needs hk:threshold, hk:min or hk:max")
        return ThresholdPredicate(query=predicate_query(store, node, resolver), bounds=bounds)

    if HK.ShapeConformance in types:
        constraints = [read_constraint(store, c) for c in read_ordered(store, node, HK.constraint)]
        if not constraints:
            raise ParseError(f"ShapeConformance {node} has no hk:constraint")
        return ShapePredicate(constraints=constraints)

    raise ParseError(f"Predicate {node} has no recognised type ({', '.join(map(str, types)) or 'none'})")


def read_constraint(store: QuadStore, node: Node) -> ShapeConstraint:
    path = store.value(node, HK.path)
    if not isinstance(path, URIRef):
        raise ParseError(f"Constraint {node} needs an IRI hk:path")
    target_class = store.value(node, HK.targetClass)
    target_nodes = [str(t) for t in store.objects(node, HK.targetNode)]
    if target_class is None and not target_nodes:
        raise ParseError(f"Constraint {node} needs hk:targetClass or hk:targetNode")

    found = [(name, store.value(node, predicate)) for predicate, name in SHAPE_CHECKS.items()]
    found = [(name, value) for name, value in found if value is not None]
    if len(found) != 1:
        raise ParseError(f"Constraint {node} must declare exactly one check, found {len(found)}")
    check, value = found[0]

    if check in ("minCount", "maxCount"):
        parsed: object = int(_number(value, f"hk:{check}"))
    elif check == "in":
        parsed = store.items(value) if store.is_list(value) else [value]
    else:
        parsed = value

    return ShapeConstraint(
        path=str(path),
        check=check,
        value=parsed,
        target_class=str(target_class) if target_class is not None else None,
        target_nodes=target_nodes,
    )


__all__ = ["discover", "find_hook", "hook_iris", "read_hook", "read_ordered", "read_predicate"]
