"""
Turtle loading and graph persistence.

Turtle is parsed with rdflib and copied into a QuadStore in document order;
every file lands in the default graph. Prefixes declared by the files are collected into
``store.namespaces`` so queries can use them without PREFIX lines.

Persistence:
    Writes go to a temporary file that is renamed over the target. An
    existing file is kept as ``<name>.bak`` when backup is requested.

Usage:
    result = load_directory(Path("graph"))
    result.store.size()
    save_default(Path("graph/default.ttl"), serialize(result.store))
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from rdflib import Graph
from rdflib.plugins.stores.memory import Memory

from kgflow.errors import ParseError
from kgflow.vocabulary import DEFAULT_BINDINGS

from .quadstore import QuadStore
from .terms import DEFAULT_GRAPH, Quad

logger = logging.getLogger(__name__)

TURTLE_SUFFIXES = (".ttl", ".turtle")
DEFAULT_GRAPH_FILE = "default.ttl"

BOOTSTRAP_TEMPLATE = """\
# Default knowledge graph.
# Hooks, pipelines and steps are loaded from every .ttl file in this directory.

@prefix rdf: <http://www.w3.org/1999/02/22-rdf-syntax-ns#> .
@prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .
@prefix xsd: <http://www.w3.org/2001/XMLSchema#> .
@prefix dct: <http://purl.org/dc/terms/> .
@prefix wf: <https://kgflow.dev/workflow#> .
@prefix hk: <https://kgflow.dev/hook#> .
@prefix op: <https://kgflow.dev/op#> .
"""


@dataclass
class LoadResult:
    store: QuadStore
    loaded_files: list[Path] = field(default_factory=list)
    skipped_files: list[Path] = field(default_factory=list)


# =============================================================================
# Loading
# =============================================================================


def list_turtle_files(path: Path) -> list[Path]:
    """Turtle files under ``path``, recursively, in sorted order."""
    path = Path(path)
    if not path.is_dir():
        return []
    return sorted(p for p in path.rglob("*") if p.is_file() and p.suffix in TURTLE_SUFFIXES)


class DocumentOrderMemory(Memory):
    """rdflib Memory store that also records triples in the order they were parsed."""

    def __init__(self, configuration=None, identifier=None):
        super().__init__(configuration, identifier)
        self.order: list[tuple] = []

    def add(self, triple, context, quoted=False):
        super().add(triple, context, quoted=quoted)
        if not quoted:
            self.order.append(triple)


def _parse_graph(text: str, source: str) -> Graph:
    graph = Graph(store=DocumentOrderMemory(), bind_namespaces="none")
    try:
        graph.parse(data=text, format="turtle", publicID=source)
    except Exception as exc:
        # rdflib raises several unrelated exception types for bad input
        raise ParseError(f"Malformed Turtle: {exc}", source=source) from exc
    return graph


def _copy_into(graph: Graph, store: QuadStore) -> int:
    # Memory iterates a set, so graph order would follow the hash seed
    quads = [Quad(s, p, o, DEFAULT_GRAPH) for s, p, o in graph.store.order]
    before = store.size()
    store.add(quads)
    for prefix, namespace in graph.namespaces():
        if prefix:
            store.bind(prefix, str(namespace))
    return store.size() - before


def parse_turtle(text: str, store: QuadStore | None = None, source: str = "<string>") -> QuadStore:
    """Parse Turtle text into ``store`` (a new one if omitted); raises ParseError."""
    store = store if store is not None else QuadStore()
    _copy_into(_parse_graph(text, source), store)
    return store


def load_file(path: Path, store: QuadStore | None = None) -> QuadStore:
    path = Path(path)
    store = store if store is not None else QuadStore()
    text = path.read_text(encoding="utf-8")
    added = _copy_into(_parse_graph(text, path.resolve().as_uri()), store)
    logger.debug(f"[turtle] {path}: {added} new quads")
    return store


def load_directory(path: Path, store: QuadStore | None = None) -> LoadResult:
    """
    Load every Turtle file under ``path``.

    Malformed or unreadable files are skipped with a warning. A missing
    directory yields an empty store.
    """
    path = Path(path)
    result = LoadResult(store=store if store is not None else QuadStore())
    if not path.is_dir():
        logger.info(f"[turtle] graph directory {path} does not exist, starting empty")
        return result

    for file in list_turtle_files(path):
        try:
            load_file(file, result.store)
        except (ParseError, OSError, UnicodeDecodeError) as exc:
            logger.warning(f"[turtle] skipping {file}: {exc}")
            result.skipped_files.append(file)
            continue
        result.loaded_files.append(file)

    logger.info(
        f"[turtle] loaded {len(result.loaded_files)} files "
        f"({len(result.skipped_files)} skipped), {result.store.size()} quads"
    )
    return result


# =============================================================================
# Serialization & Persistence
# =============================================================================


def serialize(store: QuadStore, prefixes: dict[str, str] | None = None) -> str:
    """Serialize every quad in ``store`` as Turtle."""
    graph = Graph(bind_namespaces="none")
    bindings = {**DEFAULT_BINDINGS, **store.namespaces, **(prefixes or {})}
    for prefix, namespace in bindings.items():
        graph.bind(prefix, namespace, override=True, replace=True)
    with store.lock.read():
        for quad in store:
            graph.add(quad.triple)
    return graph.serialize(format="turtle")


def atomic_write(path: Path, text: str, backup: bool = False) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(text, encoding="utf-8")
    if backup and path.exists():
        shutil.copy2(path, path.with_name(f"{path.name}.bak"))
    tmp.replace(path)


def save_default(path: Path, text: str, backup: bool = True) -> Path:
    """Atomically write the default graph file, keeping a ``.bak`` copy."""
    path = Path(path)
    if path.is_dir():
        path = path / DEFAULT_GRAPH_FILE
    atomic_write(path, text, backup=backup)
    logger.info(f"[turtle] saved {path}")
    return path


def bootstrap_default_graph(graph_dir: Path) -> Path:
    """Create ``graph_dir/default.ttl`` from the template if it is absent."""
    path = Path(graph_dir) / DEFAULT_GRAPH_FILE
    if not path.exists():
        atomic_write(path, BOOTSTRAP_TEMPLATE)
        logger.info(f"[turtle] bootstrapped {path}")
    return path


# =============================================================================
# URI Resolution
# =============================================================================


class UriResolver:
    """
    Maps URI roots to filesystem directories.

    ``graph://queries/q.rq`` resolves to ``<graph_dir>/queries/q.rq`` with
    the default roots. ``file://`` URIs and plain paths resolve against
    ``base_dir``.
    """

    def __init__(self, roots: dict[str, Path] | None = None, base_dir: Path | None = None):
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        self.roots = {prefix: Path(root) for prefix, root in (roots or {}).items()}

    def is_uri(self, value: str) -> bool:
        return value.startswith("file://") or any(value.startswith(p) for p in self.roots)

    def resolve(self, value: str) -> Path:
        for prefix in sorted(self.roots, key=len, reverse=True):
            if value.startswith(prefix):
                root = self.roots[prefix]
                if not root.is_absolute():
                    root = self.base_dir / root
                return root / value[len(prefix) :]
        if value.startswith("file://"):
            return Path(value[len("file://") :])
        path = Path(value)
        return path if path.is_absolute() else self.base_dir / path

    def read_text(self, value: str) -> str:
        return self.resolve(value).read_text(encoding="utf-8")


__all__ = [
    "BOOTSTRAP_TEMPLATE",
    "DEFAULT_GRAPH_FILE",
    "LoadResult",
    "UriResolver",
    "atomic_write",
    "bootstrap_default_graph",
    "list_turtle_files",
    "load_directory",
    "load_file",
    "parse_turtle",
    "save_default",
    "serialize",
]
