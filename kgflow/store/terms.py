"""
RDF term helpers for the quad store.

Terms are rdflib's URIRef, Literal and BNode. This module adds the pieces
the store and query layer need on top: the Quad tuple, the default graph
constant, a total ordering over terms, and conversion of terms to plain
Python values for step outputs.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, NamedTuple

from rdflib import BNode, Literal, URIRef
from rdflib.graph import DATASET_DEFAULT_GRAPH_ID
from rdflib.namespace import XSD
from rdflib.term import Node

DEFAULT_GRAPH = DATASET_DEFAULT_GRAPH_ID

NUMERIC_DATATYPES = frozenset(
    {
        XSD.integer,
        XSD.int,
        XSD.long,
        XSD.short,
        XSD.byte,
        XSD.decimal,
        XSD.double,
        XSD.float,
        XSD.nonNegativeInteger,
        XSD.positiveInteger,
        XSD.negativeInteger,
        XSD.nonPositiveInteger,
        XSD.unsignedInt,
        XSD.unsignedLong,
    }
)
INTEGER_DATATYPES = NUMERIC_DATATYPES - {XSD.decimal, XSD.double, XSD.float}


class Quad(NamedTuple):
    subject: Node
    predicate: Node
    object: Node
    graph: Node = DEFAULT_GRAPH

    @property
    def triple(self) -> tuple[Node, Node, Node]:
        return (self.subject, self.predicate, self.object)


def is_numeric(term: Any) -> bool:
    return isinstance(term, Literal) and term.datatype in NUMERIC_DATATYPES


def numeric_value(term: Literal) -> int | float | Decimal:
    """Numeric value of a literal; raises ValueError for ill-typed lexical forms."""
    value = term.toPython()
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueError(f"Not a numeric literal: {term!r}")
    return value


def term_sort_key(term: Node | None) -> tuple:
    """
    Total order over terms.

    Unbound < blank nodes < IRIs < literals. Numeric literals compare by
    value; other literals by datatype IRI, lexical form, then language tag.
    """
    if term is None:
        return (0,)
    if isinstance(term, BNode):
        return (1, str(term))
    if isinstance(term, URIRef):
        return (2, str(term))
    if isinstance(term, Literal):
        if is_numeric(term):
            try:
                return (3, 0, float(numeric_value(term)), str(term))
            except (ValueError, TypeError):
                pass
        return (3, 1, str(term.datatype or ""), str(term), term.language or "")
    return (4, str(term))


def canonical_key(term: Node | None) -> tuple:
    """
    Ordering used for result fingerprints: IRIs before literals; literals by
    datatype IRI, then lexical form, then language tag.
    """
    if term is None:
        return (3, "", "", "")
    if isinstance(term, URIRef):
        return (0, str(term), "", "")
    if isinstance(term, Literal):
        return (1, str(term.datatype or XSD.string), str(term), term.language or "")
    return (2, str(term), "", "")


def canonical_text(term: Node | None) -> str:
    """Lexical form with datatype, used when hashing result rows."""
    if term is None:
        return ""
    if isinstance(term, URIRef):
        return f"<{term}>"
    if isinstance(term, BNode):
        return f"_:{term}"
    if isinstance(term, Literal):
        text = f'"{term}"'
        if term.language:
            return f"{text}@{term.language}"
        return f"{text}^^<{term.datatype or XSD.string}>"
    return str(term)


def to_python(term: Node | None) -> Any:
    """
    Convert a term to a JSON-friendly Python value.

    IRIs become strings, numeric and boolean literals native numbers and
    booleans, blank nodes ``_:id``, everything else its lexical form.
    """
    if term is None:
        return None
    if isinstance(term, BNode):
        return f"_:{term}"
    if isinstance(term, URIRef):
        return str(term)
    if isinstance(term, Literal):
        if term.datatype == XSD.boolean:
            return str(term).strip().lower() in ("true", "1")
        if term.datatype in INTEGER_DATATYPES:
            try:
                return int(str(term))
            except ValueError:
                return str(term)
        if term.datatype in NUMERIC_DATATYPES:
            try:
                return float(str(term))
            except ValueError:
                return str(term)
        return str(term)
    return str(term)


def from_python(value: Any) -> Node:
    """Convert a plain Python value to a term (strings become plain literals)."""
    if isinstance(value, Node):
        return value
    if isinstance(value, str) and value.startswith("_:"):
        return BNode(value[2:])
    return Literal(value)


__all__ = [
    "DEFAULT_GRAPH",
    "INTEGER_DATATYPES",
    "NUMERIC_DATATYPES",
    "Quad",
    "canonical_key",
    "canonical_text",
    "from_python",
    "is_numeric",
    "numeric_value",
    "term_sort_key",
    "to_python",
]
