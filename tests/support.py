"""
Shared graph text for the test modules.
"""

from kgflow.store import QuadStore, parse_turtle

FIXED_NOW = "2024-01-01T00:00:00Z"

PREFIXES = """\
@prefix rdf: <http://www.w3.org/1999/02/22-rdf-syntax-ns#> .
@prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .
@prefix xsd: <http://www.w3.org/2001/XMLSchema#> .
@prefix dct: <http://purl.org/dc/terms/> .
@prefix wf: <https://kgflow.dev/workflow#> .
@prefix hk: <https://kgflow.dev/hook#> .
@prefix op: <https://kgflow.dev/op#> .
@prefix git: <https://kgflow.dev/git#> .
@prefix ex: <http://example.org/> .
"""

COMMITS_TTL = PREFIXES + """
ex:c1 a git:Commit ;
    git:message "Initial import" ;
    git:author ex:alice ;
    git:additions 10 .

ex:c2 a git:Commit ;
    git:message "Fix parser" ;
    git:author ex:bob ;
    git:additions 32 .

ex:alice a ex:Person ; rdfs:label "Alice" .
ex:bob a ex:Person ; rdfs:label "Bob" .
"""


def load(text: str, store: QuadStore | None = None) -> QuadStore:
    """Parse Turtle that omits the common prefix block."""
    return parse_turtle(PREFIXES + text, store)
