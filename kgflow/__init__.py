"""
kgflow - workflows and hooks defined in an RDF knowledge graph.

kgflow keeps a quad store loaded from Turtle files and runs workflows that
are themselves described in the graph:

- **Store**: Named-graph quad store with a SPARQL 1.1 subset (SELECT, ASK, CONSTRUCT)
- **Hooks**: Predicates over the graph (ASK, SHACL-style, delta, threshold, count, window)
- **Workflows**: Steps planned into parallel waves and run through typed handlers
- **Durable I/O**: Locks, a job queue, hash-chained receipts and snapshots on the filesystem

Quick Start:
    >>> from kgflow import KnowledgeEngine
    >>> from kgflow.config import get_settings
    >>>
    >>> engine = KnowledgeEngine(get_settings())
    >>> engine.start()
    >>> run = await engine.run("report", inputs={"limit": 5})
"""

__version__ = "0.1.0"

from kgflow.engine import KnowledgeEngine
from kgflow.errors import ExitCode, KgflowError

__all__ = [
    "__version__",
    "ExitCode",
    "KgflowError",
    "KnowledgeEngine",
]
