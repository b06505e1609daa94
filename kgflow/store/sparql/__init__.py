"""
SPARQL over the quad store, evaluated by rdflib.

Supported:
- SELECT (projection expressions, DISTINCT, GROUP BY, HAVING, ORDER BY,
  LIMIT/OFFSET, aggregates), ASK, CONSTRUCT, DESCRIBE
- OPTIONAL, UNION, FILTER, BIND, VALUES, EXISTS/NOT EXISTS, property paths
- INSERT DATA, DELETE DATA, DELETE WHERE, DELETE/INSERT ... WHERE

GRAPH, SERVICE, MINUS, sub-queries, negated property sets and the graph
management updates are rejected with ``QueryError(Unsupported)`` rather
than evaluated.

Prefixes used without a PREFIX declaration are injected when they are
known (store bindings first, then WELL_KNOWN_PREFIXES) and the store holds
at least one IRI in that namespace.

Row order:
    SELECT rows follow evaluation order: patterns are matched in store
    insertion order and joins keep that order. CONSTRUCT and DESCRIBE
    quads come back sorted, since rdflib builds them into a set-backed
    graph.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from rdflib import Graph, Variable
from rdflib.plugins.sparql.sparql import NotBoundError, SPARQLError

from kgflow.errors import CancelledError, QueryError, QueryErrorKind

from ..terms import DEFAULT_GRAPH, Quad, from_python, term_sort_key
from .prepare import PreparedQuery, declared_and_used_prefixes, inject_prefixes, prepare
from .results import QueryResult
from .view import QuadStoreView

if TYPE_CHECKING:
    from ..quadstore import QuadStore

logger = logging.getLogger(__name__)


def _quad_key(quad: Quad) -> tuple:
    return tuple(term_sort_key(term) for term in quad.triple)


def _graph_quads(graph: Graph) -> list[Quad]:
    return sorted((Quad(s, p, o, DEFAULT_GRAPH) for s, p, o in graph), key=_quad_key)


def _run_query(store: QuadStore, prepared: PreparedQuery, initial: dict | None) -> QueryResult:
    result = Graph(store=QuadStoreView(store)).query(prepared.compiled, initBindings=initial)
    if result.type == "SELECT":
        variables = [str(var) for var in result.vars or []]
        return QueryResult.select(variables, [row.asdict() for row in result])
    if result.type == "ASK":
        return QueryResult.ask(bool(result.askAnswer))
    if result.type == "CONSTRUCT":
        return QueryResult.construct(_graph_quads(result.graph))
    return QueryResult.describe(_graph_quads(result.graph))


def _run_update(
    store: QuadStore,
    prepared: PreparedQuery,
    initial: dict | None,
    abort: threading.Event | None,
) -> QueryResult:
    view = QuadStoreView(store)
    with store.lock.write():
        Graph(store=view).update(prepared.compiled, initBindings=initial)
        if abort is not None and abort.is_set():
            logger.info("[sparql] update abandoned before commit, store unchanged")
            raise CancelledError("Update abandoned before commit")
        inserted, deleted = len(view.added), len(view.removed)
        epoch = view.commit() if view.dirty else store.epoch
    return QueryResult.update(inserted=inserted, deleted=deleted, epoch=epoch)


def execute(
    store: QuadStore,
    text: str,
    bindings: dict[str, Any] | None = None,
    abort: threading.Event | None = None,
) -> QueryResult:
    """
    Prepare and evaluate ``text`` against ``store``.

    ``bindings`` pre-binds variables (name without ``?``) to values; plain
    Python values are converted to literals, rdflib terms pass through.
    Reads hold the store's read lock; updates hold the write lock and apply
    their changes as one batch. An update whose ``abort`` event is set by
    the time evaluation finishes leaves the store unchanged.
    """
    prepared = prepare(text, store)
    initial = None
    if bindings:
        initial = {Variable(name.lstrip("?")): from_python(value) for name, value in bindings.items()}
    try:
        if prepared.update:
            return _run_update(store, prepared, initial, abort)
        with store.lock.read():
            return _run_query(store, prepared, initial)
    except (QueryError, CancelledError):
        raise
    except NotBoundError as exc:
        raise QueryError(QueryErrorKind.UNBOUND_VARIABLE, str(exc)) from exc
    except SPARQLError as exc:
        raise QueryError(QueryErrorKind.TYPE_MISMATCH, str(exc)) from exc
    except RecursionError as exc:
        raise QueryError(QueryErrorKind.UNSUPPORTED, "Query nesting is too deep") from exc
    except Exception as exc:
        # rdflib signals unsupported operations with plain Exceptions
        raise QueryError(QueryErrorKind.UNSUPPORTED, f"{type(exc).__name__}: {exc}") from exc


__all__ = [
    "PreparedQuery",
    "QuadStoreView",
    "QueryResult",
    "declared_and_used_prefixes",
    "execute",
    "inject_prefixes",
    "prepare",
]
