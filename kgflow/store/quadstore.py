"""
Time-indexed quad store.

The store is a set of quads with five lookup indices, (s), (p), (o),
(s,p) and (p,o). Every mutation batch that changes the set is assigned a
new epoch; the mutation log makes ``since(epoch)`` deltas cheap.

Concurrency:
    One store is shared by every worker. Reads run concurrently; writes
    serialize on a single writer lock. UPDATE queries hold the writer lock
    for their whole evaluation.

Usage:
    store = QuadStore()
    epoch = store.add([(EX.c1, RDF.type, GIT.Commit)])
    store.has(EX.c1, RDF.type, GIT.Commit)           # True
    result = store.query("SELECT ?c WHERE { ?c a git:Commit }")
    delta = store.since(epoch - 1)                    # Delta(added=[...], removed=[])
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rdflib import BNode, Literal, URIRef
from rdflib.namespace import RDF
from rdflib.term import Node

from .terms import DEFAULT_GRAPH, Quad

if TYPE_CHECKING:
    from .sparql.results import QueryResult

logger = logging.getLogger(__name__)

QuadLike = Quad | tuple


# =============================================================================
# Reader-Writer Lock
# =============================================================================


class ReadWriteLock:
    """
    Writer-preferring reader-writer lock.

    Both sides are reentrant per thread: a thread holding the write lock
    may read, and nested reads by the same thread never block on a
    waiting writer.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._writer_depth = 0
        self._waiting_writers = 0
        self._local = threading.local()

    @contextmanager
    def read(self) -> Iterator[None]:
        me = threading.get_ident()
        depth = getattr(self._local, "depth", 0)
        counted = False
        if depth == 0 and self._writer != me:
            with self._cond:
                while self._writer is not None or self._waiting_writers:
                    self._cond.wait()
                self._readers += 1
            counted = True
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth = depth
            if counted:
                with self._cond:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
            else:
                self._waiting_writers += 1
                try:
                    while self._writer is not None or self._readers:
                        self._cond.wait()
                finally:
                    self._waiting_writers -= 1
                self._writer = me
                self._writer_depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._writer_depth -= 1
                if self._writer_depth == 0:
                    self._writer = None
                    self._cond.notify_all()


# =============================================================================
# Delta
# =============================================================================


@dataclass
class Delta:
    """Net change between an epoch and now."""

    since: int
    epoch: int
    added: list[Quad] = field(default_factory=list)
    removed: list[Quad] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.added and not self.removed


# =============================================================================
# Quad Store
# =============================================================================


def _as_quad(item: QuadLike) -> Quad:
    if isinstance(item, Quad):
        quad = item
    elif len(item) == 3:
        quad = Quad(item[0], item[1], item[2], DEFAULT_GRAPH)
    elif len(item) == 4:
        quad = Quad(item[0], item[1], item[2], item[3] if item[3] is not None else DEFAULT_GRAPH)
    else:
        raise ValueError(f"Expected a triple or quad, got {item!r}")

    if not isinstance(quad.subject, (URIRef, BNode)):
        raise ValueError(f"Quad subject must be an IRI or blank node: {quad.subject!r}")
    if not isinstance(quad.predicate, URIRef):
        raise ValueError(f"Quad predicate must be an IRI: {quad.predicate!r}")
    if not isinstance(quad.object, (URIRef, BNode, Literal)):
        raise ValueError(f"Quad object must be an RDF term: {quad.object!r}")
    return quad


class QuadStore:
    """
    In-memory quad store with epoch tracking.

    Quads are kept in insertion order; all lookups return quads in that
    order, which gives SPARQL results their deterministic tiebreak.
    """

    def __init__(self, quads: Iterable[QuadLike] | None = None) -> None:
        self._lock = ReadWriteLock()
        self._quads: dict[Quad, int] = {}
        self._by_s: dict[Node, dict[Quad, None]] = defaultdict(dict)
        self._by_p: dict[Node, dict[Quad, None]] = defaultdict(dict)
        self._by_o: dict[Node, dict[Quad, None]] = defaultdict(dict)
        self._by_sp: dict[tuple[Node, Node], dict[Quad, None]] = defaultdict(dict)
        self._by_po: dict[tuple[Node, Node], dict[Quad, None]] = defaultdict(dict)
        self._epoch = 0
        self._log_epochs: list[int] = []
        self._log: list[tuple[int, bool, Quad]] = []
        self._namespace_cache: tuple[int, dict[str, bool]] = (0, {})
        self.namespaces: dict[str, str] = {}

        if quads is not None:
            self.add(quads)

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    @property
    def epoch(self) -> int:
        """Epoch of the most recent mutation (0 for a fresh store)."""
        return self._epoch

    def add(self, quads: Iterable[QuadLike]) -> int:
        """Add quads; returns the epoch (unchanged if every quad was present)."""
        return self.update(add=quads)

    def remove(self, quads: Iterable[QuadLike]) -> int:
        """Remove quads; returns the epoch (unchanged if none were present)."""
        return self.update(remove=quads)

    def update(
        self,
        remove: Iterable[QuadLike] = (),
        add: Iterable[QuadLike] = (),
    ) -> int:
        """
        Apply removals then additions as one mutation batch.

        The batch gets a single new epoch if it changed anything.
        """
        to_remove = [_as_quad(q) for q in remove]
        to_add = [_as_quad(q) for q in add]

        with self._lock.write():
            epoch = self._epoch + 1
            changed = False
            for quad in to_remove:
                if quad in self._quads:
                    self._unindex(quad)
                    self._record(epoch, False, quad)
                    changed = True
            for quad in to_add:
                if quad not in self._quads:
                    self._index(quad, epoch)
                    self._record(epoch, True, quad)
                    changed = True
            if changed:
                self._epoch = epoch
                logger.debug(
                    f"[store] epoch {epoch}: -{len(to_remove)} +{len(to_add)} "
                    f"(size {len(self._quads)})"
                )
            return self._epoch

    def clear(self) -> int:
        """Remove every quad as one mutation batch."""
        with self._lock.write():
            return self.update(remove=list(self._quads))

    def _record(self, epoch: int, added: bool, quad: Quad) -> None:
        self._log_epochs.append(epoch)
        self._log.append((epoch, added, quad))

    def _index(self, quad: Quad, epoch: int) -> None:
        s, p, o, _ = quad
        self._quads[quad] = epoch
        self._by_s[s][quad] = None
        self._by_p[p][quad] = None
        self._by_o[o][quad] = None
        self._by_sp[(s, p)][quad] = None
        self._by_po[(p, o)][quad] = None

    def _unindex(self, quad: Quad) -> None:
        s, p, o, _ = quad
        del self._quads[quad]
        for index, key in (
            (self._by_s, s),
            (self._by_p, p),
            (self._by_o, o),
            (self._by_sp, (s, p)),
            (self._by_po, (p, o)),
        ):
            bucket = index[key]
            del bucket[quad]
            if not bucket:
                del index[key]

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def match(
        self,
        s: Node | None = None,
        p: Node | None = None,
        o: Node | None = None,
        g: Node | None = None,
        since: int | None = None,
    ) -> list[Quad]:
        """
        Quads matching the given pattern, in insertion order.

        ``None`` is a wildcard. ``since`` keeps only quads added after that
        epoch.
        """
        with self._lock.read():
            candidates = self._candidates(s, p, o)
            result = []
            for quad in candidates:
                if s is not None and quad.subject != s:
                    continue
                if p is not None and quad.predicate != p:
                    continue
                if o is not None and quad.object != o:
                    continue
                if g is not None and quad.graph != g:
                    continue
                if since is not None and self._quads[quad] <= since:
                    continue
                result.append(quad)
            return result

    def _candidates(self, s: Node | None, p: Node | None, o: Node | None) -> Iterable[Quad]:
        if s is not None and p is not None:
            return list(self._by_sp.get((s, p), ()))
        if p is not None and o is not None:
            return list(self._by_po.get((p, o), ()))
        if s is not None:
            return list(self._by_s.get(s, ()))
        if o is not None:
            return list(self._by_o.get(o, ()))
        if p is not None:
            return list(self._by_p.get(p, ()))
        return list(self._quads)

    def has(self, s: Node, p: Node, o: Node, g: Node | None = None) -> bool:
        with self._lock.read():
            if g is not None:
                return Quad(s, p, o, g) in self._quads
            return any(q.object == o for q in self._by_sp.get((s, p), ()))

    def objects(self, s: Node, p: Node) -> list[Node]:
        """Objects of (s, p, ?) across graphs, first occurrence order."""
        return list(dict.fromkeys(q.object for q in self.match(s, p)))

    def value(self, s: Node, p: Node) -> Node | None:
        """First object of (s, p, ?) or None."""
        found = self.match(s, p)
        return found[0].object if found else None

    def subjects(self, p: Node, o: Node) -> list[Node]:
        return list(dict.fromkeys(q.subject for q in self.match(None, p, o)))

    def items(self, head: Node) -> list[Node]:
        """Members of the RDF list starting at ``head`` (rdf:first / rdf:rest)."""
        members: list[Node] = []
        seen: set[Node] = set()
        node: Node | None = head
        while node is not None and node != RDF.nil and node not in seen:
            seen.add(node)
            first = self.value(node, RDF.first)
            if first is None:
                break
            members.append(first)
            node = self.value(node, RDF.rest)
        return members

    def is_list(self, node: Node) -> bool:
        return node == RDF.nil or self.value(node, RDF.first) is not None

    def size(self) -> int:
        with self._lock.read():
            return len(self._quads)

    def __len__(self) -> int:
        return self.size()

    def __iter__(self) -> Iterator[Quad]:
        return iter(self.match())

    def __contains__(self, item: QuadLike) -> bool:
        quad = _as_quad(item)
        return self.has(quad.subject, quad.predicate, quad.object, quad.graph)

    def stats(self) -> dict[str, int]:
        with self._lock.read():
            return {
                "subjects": len(self._by_s),
                "predicates": len(self._by_p),
                "objects": len(self._by_o),
                "quads": len(self._quads),
            }

    # -------------------------------------------------------------------------
    # Delta
    # -------------------------------------------------------------------------

    def since(self, epoch: int) -> Delta:
        """Net added and removed quads between ``epoch`` and now."""
        with self._lock.read():
            start = bisect.bisect_right(self._log_epochs, epoch)
            present_before: dict[Quad, bool] = {}
            for _, added, quad in self._log[start:]:
                if quad not in present_before:
                    # First change after the epoch tells us the earlier state
                    present_before[quad] = not added

            delta = Delta(since=epoch, epoch=self._epoch)
            for quad, before in present_before.items():
                now = quad in self._quads
                if now and not before:
                    delta.added.append(quad)
                elif before and not now:
                    delta.removed.append(quad)
            return delta

    # -------------------------------------------------------------------------
    # Namespaces
    # -------------------------------------------------------------------------

    def bind(self, prefix: str, namespace: str) -> None:
        self.namespaces[prefix] = str(namespace)

    def uses_namespace(self, namespace: str) -> bool:
        """True if any IRI in the store starts with ``namespace``."""
        with self._lock.read():
            cached_epoch, cache = self._namespace_cache
            if cached_epoch != self._epoch:
                cache = {}
                self._namespace_cache = (self._epoch, cache)
            if namespace not in cache:
                cache[namespace] = any(
                    isinstance(term, URIRef) and term.startswith(namespace)
                    for index in (self._by_s, self._by_p, self._by_o)
                    for term in index
                )
            return cache[namespace]

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def query(self, text: str, bindings: dict[str, Any] | None = None) -> QueryResult:
        """Evaluate a SPARQL query or update against this store."""
        from .sparql import execute

        return execute(self, text, bindings=bindings)

    def copy(self) -> QuadStore:
        """Independent store with the same quads (epoch history is not copied)."""
        with self._lock.read():
            clone = QuadStore(list(self._quads))
            clone.namespaces = dict(self.namespaces)
            return clone

    def __repr__(self) -> str:
        return f"QuadStore(size={len(self._quads)}, epoch={self._epoch})"


__all__ = ["Delta", "QuadStore", "ReadWriteLock"]
