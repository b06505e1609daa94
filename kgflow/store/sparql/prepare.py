"""
Query preparation.

Text is parsed with rdflib's SPARQL grammar, known prefixes the text uses
without declaring are injected, and the translated algebra is checked for
the features this engine does not support. Prepared queries are cached by
their final text.

Prefix injection:
    A prefix used without a PREFIX line is injected when it is bound in the
    store's namespaces or in WELL_KNOWN_PREFIXES and the store holds at
    least one IRI in that namespace. Any other undeclared prefix is a
    Syntax error, even where rdflib would resolve it from its own bindings.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from pyparsing import ParseBaseException, ParseResults
from rdflib.paths import AlternativePath, InvPath, MulPath, NegatedPath, Path, SequencePath
from rdflib.plugins.sparql.algebra import translateQuery, translateUpdate
from rdflib.plugins.sparql.parser import parseQuery, parseUpdate
from rdflib.plugins.sparql.parserutils import CompValue

from kgflow.errors import QueryError, QueryErrorKind
from kgflow.vocabulary import WELL_KNOWN_PREFIXES

if TYPE_CHECKING:
    from ..quadstore import QuadStore

logger = logging.getLogger(__name__)

_UPDATE_START = re.compile(
    r"^\s*(?:(?:#[^\n]*\n|PREFIX\s+[\w.-]*:\s*<[^>]*>|BASE\s*<[^>]*>)\s*)*"
    r"(?:INSERT|DELETE|LOAD|CLEAR|DROP|CREATE|ADD|MOVE|COPY|WITH)\b",
    re.IGNORECASE,
)

UNSUPPORTED_PARTS = {
    "Graph": "GRAPH",
    "ServiceGraphPattern": "SERVICE",
    "Minus": "MINUS",
}

SUPPORTED_UPDATES = ("InsertData", "DeleteData", "DeleteWhere", "Modify")

CACHE_SIZE = 256


@dataclass(frozen=True)
class PreparedQuery:
    text: str
    update: bool
    compiled: Any


def is_update(text: str) -> bool:
    return _UPDATE_START.match(text) is not None


# =============================================================================
# Parse tree helpers
# =============================================================================


def _walk(node: Any):
    """CompValues of a parse tree or algebra, outermost first."""
    if isinstance(node, CompValue):
        yield node
        for key, value in node.items():
            if key != "_vars":
                yield from _walk(value)
    elif isinstance(node, (list, tuple, ParseResults)):
        for item in node:
            yield from _walk(item)


@lru_cache(maxsize=CACHE_SIZE)
def parse(text: str) -> Any:
    """rdflib parse tree for ``text``; raises QueryError(Syntax)."""
    try:
        return parseUpdate(text) if is_update(text) else parseQuery(text)
    except ParseBaseException as exc:
        raise QueryError(QueryErrorKind.SYNTAX, exc.msg, exc.loc) from exc


def declared_and_used_prefixes(text: str) -> tuple[set[str], list[str]]:
    """Prefixes declared in the prologue and prefixes used in prefixed names."""
    declared: set[str] = set()
    used: list[str] = []
    for part in _walk(parse(text)):
        if part.name == "PrefixDecl":
            declared.add(part["prefix"] if "prefix" in part else "")
        elif part.name == "pname":
            prefix = part["prefix"] if "prefix" in part else ""
            if prefix not in used:
                used.append(prefix)
    return declared, used


def _injectable(prefix: str, store: QuadStore) -> str | None:
    namespace = store.namespaces.get(prefix) or WELL_KNOWN_PREFIXES.get(prefix)
    if namespace and store.uses_namespace(namespace):
        return namespace
    return None


def inject_prefixes(text: str, store: QuadStore) -> str:
    """Prepend PREFIX lines for known prefixes the query uses but never declares."""
    declared, used = declared_and_used_prefixes(text)
    lines = []
    for prefix in used:
        if prefix in declared:
            continue
        namespace = _injectable(prefix, store)
        if namespace is None:
            raise QueryError(QueryErrorKind.SYNTAX, f"Unknown prefix '{prefix}:'")
        lines.append(f"PREFIX {prefix}: <{namespace}>")
    if not lines:
        return text
    logger.debug(f"[sparql] injected prefixes: {', '.join(lines)}")
    return "\n".join(lines) + "\n" + text


# =============================================================================
# Feature checks
# =============================================================================


def _negated(path: Any) -> bool:
    if isinstance(path, NegatedPath):
        return True
    if isinstance(path, (SequencePath, AlternativePath)):
        return any(_negated(arg) for arg in path.args)
    if isinstance(path, InvPath):
        return _negated(path.arg)
    if isinstance(path, MulPath):
        return _negated(path.path)
    return False


def _unsupported(message: str) -> QueryError:
    return QueryError(QueryErrorKind.UNSUPPORTED, message)


def check_algebra(algebra: Any) -> None:
    """Reject GRAPH, SERVICE, MINUS, sub-queries and negated property sets."""
    for part in _walk(algebra):
        if part.name in UNSUPPORTED_PARTS:
            raise _unsupported(f"{UNSUPPORTED_PARTS[part.name]} is not supported")
        if part.name == "ToMultiSet" and isinstance(part["p"], CompValue) and part["p"].name != "values":
            raise _unsupported("Sub-queries are not supported")
        if part.name == "BGP":
            for _, predicate, _ in part["triples"]:
                if isinstance(predicate, Path) and _negated(predicate):
                    raise _unsupported("Negated property sets are not supported")


def check_projection(algebra: Any) -> None:
    """Projected variables must be bound somewhere in the pattern."""
    for part in _walk(algebra):
        if part.name != "Project":
            continue
        pattern = part["p"]
        bound = pattern["_vars"] if isinstance(pattern, CompValue) and "_vars" in pattern else set()
        for var in part["PV"]:
            if var not in bound:
                raise QueryError(QueryErrorKind.UNBOUND_VARIABLE, f"?{var} is projected but never bound")
        return


def _field(part: CompValue, key: str) -> Any:
    # CompValue.get returns the key itself for a missing field
    return part[key] if key in part else None


def check_update(update: Any) -> None:
    """Only INSERT/DELETE operations on the default graph are supported."""
    for operation in update.algebra:
        if operation.name not in SUPPORTED_UPDATES:
            raise _unsupported(f"{operation.name.upper()} is not supported")
        if _field(operation, "withClause") or _field(operation, "using"):
            raise _unsupported("WITH and USING are not supported")
        blocks = [operation, _field(operation, "delete"), _field(operation, "insert")]
        if any(isinstance(block, CompValue) and _field(block, "quads") for block in blocks):
            raise _unsupported("GRAPH is not supported")
        check_algebra(_field(operation, "where"))


# =============================================================================
# Preparation
# =============================================================================


@lru_cache(maxsize=CACHE_SIZE)
def _compile(text: str, update: bool) -> PreparedQuery:
    try:
        if update:
            compiled = translateUpdate(parseUpdate(text))
        else:
            compiled = translateQuery(parseQuery(text))
    except ParseBaseException as exc:
        raise QueryError(QueryErrorKind.SYNTAX, exc.msg, exc.loc) from exc
    except QueryError:
        raise
    except Exception as exc:
        # rdflib reports bad prefixes and malformed terms with plain Exceptions
        raise QueryError(QueryErrorKind.SYNTAX, str(exc)) from exc

    if update:
        check_update(compiled)
    else:
        check_algebra(compiled.algebra)
        check_projection(compiled.algebra)
    return PreparedQuery(text=text, update=update, compiled=compiled)


def prepare(text: str, store: QuadStore) -> PreparedQuery:
    """
    Parse, inject prefixes, translate and check ``text``.

    Raises:
        QueryError: Syntax, UnboundVariable or Unsupported
    """
    update = is_update(text)
    return _compile(inject_prefixes(text, store), update)


def cache_clear() -> None:
    parse.cache_clear()
    _compile.cache_clear()


__all__ = [
    "PreparedQuery",
    "cache_clear",
    "check_algebra",
    "check_projection",
    "declared_and_used_prefixes",
    "inject_prefixes",
    "is_update",
    "parse",
    "prepare",
]
