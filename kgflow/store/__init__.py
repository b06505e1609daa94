"""
Knowledge substrate: the quad store, its SPARQL subset and Turtle I/O.
"""

from .quadstore import Delta, QuadStore, ReadWriteLock
from .sparql import QueryResult, execute
from .terms import DEFAULT_GRAPH, Quad, from_python, to_python
from .turtle import (
    LoadResult,
    UriResolver,
    bootstrap_default_graph,
    list_turtle_files,
    load_directory,
    parse_turtle,
    save_default,
    serialize,
)

__all__ = [
    "DEFAULT_GRAPH",
    "Delta",
    "LoadResult",
    "Quad",
    "QuadStore",
    "QueryResult",
    "ReadWriteLock",
    "UriResolver",
    "bootstrap_default_graph",
    "execute",
    "from_python",
    "list_turtle_files",
    "load_directory",
    "parse_turtle",
    "save_default",
    "serialize",
    "to_python",
]
