"""
RDF vocabulary used by workflow and hook definitions.

Three namespaces describe workflows:
- WF: step types and step configuration predicates
- HK: hooks and their predicate kinds
- OP: pipelines and their ordered step lists

WELL_KNOWN_PREFIXES is the registry used for prefix auto-injection in
SPARQL text that omits PREFIX declarations.
"""

from __future__ import annotations

from rdflib import Namespace
from rdflib.namespace import DCTERMS, OWL, RDF, RDFS, XSD

WF = Namespace("https://kgflow.dev/workflow#")
HK = Namespace("https://kgflow.dev/hook#")
OP = Namespace("https://kgflow.dev/op#")
GIT = Namespace("https://kgflow.dev/git#")
EX = Namespace("http://example.org/")

WELL_KNOWN_PREFIXES: dict[str, str] = {
    "rdf": str(RDF),
    "rdfs": str(RDFS),
    "xsd": str(XSD),
    "owl": str(OWL),
    "dct": str(DCTERMS),
    "dcterms": str(DCTERMS),
    "foaf": "http://xmlns.com/foaf/0.1/",
    "skos": "http://www.w3.org/2004/02/skos/core#",
    "schema": "https://schema.org/",
    "prov": "http://www.w3.org/ns/prov#",
    "wf": str(WF),
    "hk": str(HK),
    "op": str(OP),
    "git": str(GIT),
    "ex": str(EX),
}

# Prefixes written at the top of serialized graphs and the bootstrap template.
DEFAULT_BINDINGS: dict[str, str] = {
    "rdf": str(RDF),
    "rdfs": str(RDFS),
    "xsd": str(XSD),
    "dct": str(DCTERMS),
    "wf": str(WF),
    "hk": str(HK),
    "op": str(OP),
}


def local_name(iri: str) -> str:
    """Text after the last ``#`` or ``/`` of an IRI."""
    text = str(iri)
    cut = max(text.rfind("#"), text.rfind("/"))
    return text[cut + 1 :] if 0 <= cut < len(text) - 1 else text


__all__ = [
    "DCTERMS",
    "DEFAULT_BINDINGS",
    "EX",
    "GIT",
    "HK",
    "OP",
    "RDF",
    "RDFS",
    "WELL_KNOWN_PREFIXES",
    "WF",
    "XSD",
    "local_name",
]
