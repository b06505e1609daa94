"""
rdflib view of a QuadStore.

rdflib's SPARQL engine reads a graph through the ``Store`` interface; this
view answers ``triples()`` from the QuadStore indices, so matches come back
in store insertion order. Named graphs are not exposed: every quad is seen
through one default graph, and a triple present in several graphs is seen
once.

Writes made by an update are staged on the view and only reach the
QuadStore when ``commit()`` applies them as one mutation batch. Until then
the view shows the staged state, so later operations of the same request
read their predecessors' writes.

The non-lazy rdflib join collects its right side into a ``set``, whose
iteration order follows the hash seed; ``ordered_join`` replaces it with a
list so joined rows keep their evaluation order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from rdflib import BNode, Literal, URIRef
from rdflib.plugins.sparql import CUSTOM_EVALS
from rdflib.plugins.sparql.evaluate import evalPart
from rdflib.store import Store

from ..quadstore import QuadStore
from ..terms import DEFAULT_GRAPH, Quad

logger = logging.getLogger(__name__)

Triple = tuple


def _matches(triple: Triple, pattern: Triple) -> bool:
    return all(want is None or want == have for want, have in zip(pattern, triple))


class QuadStoreView(Store):
    """
    rdflib Store over a QuadStore.

    Example:
        view = QuadStoreView(store)
        Graph(store=view).update("INSERT DATA { ex:a ex:b ex:c }")
        view.commit()
    """

    context_aware = False
    formula_aware = False
    transaction_aware = False
    graph_aware = False

    def __init__(self, quads: QuadStore):
        super().__init__()
        self.quads = quads
        self.added: dict[Triple, None] = {}
        self.removed: dict[Triple, None] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _match(self, pattern: Triple) -> list[Triple]:
        s, p, o = pattern
        seen: set[Triple] = set()
        found: list[Triple] = []
        for quad in self.quads.match(s, p, o):
            triple = quad.triple
            if triple in seen or triple in self.removed:
                continue
            seen.add(triple)
            found.append(triple)
        for triple in self.added:
            if triple not in seen and _matches(triple, pattern):
                seen.add(triple)
                found.append(triple)
        return found

    def triples(self, triple_pattern, context=None) -> Iterator:
        for triple in self._match(triple_pattern):
            yield triple, iter(())

    def __len__(self, context=None) -> int:
        return len(self._match((None, None, None)))

    # -------------------------------------------------------------------------
    # Staged writes
    # -------------------------------------------------------------------------

    def add(self, triple, context=None, quoted=False) -> None:
        s, p, o = triple
        if not isinstance(s, (URIRef, BNode)) or not isinstance(p, URIRef):
            logger.debug(f"[sparql] skipping ill-formed triple {triple!r}")
            return
        if not isinstance(o, (URIRef, BNode, Literal)):
            return
        if triple in self.removed:
            del self.removed[triple]
        elif not self.quads.match(s, p, o):
            self.added[triple] = None

    def remove(self, triple_pattern, context=None) -> None:
        for triple in self._match(triple_pattern):
            if triple in self.added:
                del self.added[triple]
            else:
                self.removed[triple] = None

    @property
    def dirty(self) -> bool:
        return bool(self.added or self.removed)

    def commit(self) -> int:
        """Apply the staged changes to the QuadStore as one batch; returns the epoch."""
        with self.quads.lock.write():
            remove = [quad for s, p, o in self.removed for quad in self.quads.match(s, p, o)]
            add = [Quad(s, p, o, DEFAULT_GRAPH) for s, p, o in self.added]
            return self.quads.update(remove=remove, add=add)


# =============================================================================
# Evaluation order
# =============================================================================


def ordered_join(ctx, part):
    """Custom rdflib evaluation for non-lazy joins that keeps row order."""
    if part.name != "Join" or part.lazy:
        raise NotImplementedError()
    right = list(evalPart(ctx, part.p2))

    def join():
        for left in evalPart(ctx, part.p1):
            for row in right:
                if left.compatible(row):
                    yield left.merge(row)

    return join()


CUSTOM_EVALS["kgflow_ordered_join"] = ordered_join


__all__ = ["QuadStoreView", "ordered_join"]
