"""
Tests for Turtle loading, serialization and URI resolution.
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest
from rdflib import Literal
from rdflib.namespace import RDF

from kgflow.errors import ParseError
from kgflow.store import UriResolver, bootstrap_default_graph, list_turtle_files, load_directory, parse_turtle, save_default, serialize
from kgflow.store.turtle import DEFAULT_GRAPH_FILE
from kgflow.vocabulary import EX, GIT

from .support import COMMITS_TTL, PREFIXES


# =============================================================================
# Parsing
# =============================================================================


class TestParseTurtle:
    def test_parses_into_new_store(self):
        store = parse_turtle(COMMITS_TTL)
        assert store.has(EX.c1, RDF.type, GIT.Commit)
        assert store.value(EX.c2, GIT.additions) == Literal(32)

    def test_collects_prefixes(self):
        store = parse_turtle(COMMITS_TTL)
        assert store.namespaces["git"] == str(GIT)
        assert store.namespaces["ex"] == str(EX)

    def test_parses_into_existing_store(self, store):
        parse_turtle(PREFIXES + "ex:a a ex:Thing .", store)
        parse_turtle(PREFIXES + "ex:b a ex:Thing .", store)
        assert store.size() == 2

    def test_malformed_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            parse_turtle("ex:a a", source="broken.ttl")
        assert exc_info.value.source == "broken.ttl"


# =============================================================================
# Directory Loading
# =============================================================================


class TestLoadDirectory:
    def test_missing_directory_is_empty(self, tmp_path):
        result = load_directory(tmp_path / "nope")
        assert result.store.size() == 0
        assert result.loaded_files == []

    def test_loads_recursively_in_sorted_order(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "b.ttl").write_text(PREFIXES + "ex:b a ex:Thing .")
        (tmp_path / "sub" / "a.ttl").write_text(PREFIXES + "ex:a a ex:Thing .")
        (tmp_path / "notes.txt").write_text("ignored")

        assert list_turtle_files(tmp_path) == [tmp_path / "b.ttl", tmp_path / "sub" / "a.ttl"]
        result = load_directory(tmp_path)
        assert result.store.size() == 2
        assert len(result.loaded_files) == 2

    def test_malformed_file_is_skipped(self, tmp_path):
        (tmp_path / "good.ttl").write_text(PREFIXES + "ex:a a ex:Thing .")
        (tmp_path / "bad.ttl").write_text("this is not turtle")
        result = load_directory(tmp_path)
        assert result.skipped_files == [tmp_path / "bad.ttl"]
        assert result.store.has(EX.a, RDF.type, EX.Thing)


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    def test_serialize_round_trips(self, commit_store):
        reloaded = parse_turtle(serialize(commit_store))
        assert set(reloaded) == set(commit_store)

    def test_save_keeps_backup(self, tmp_path, commit_store):
        path = tmp_path / DEFAULT_GRAPH_FILE
        path.write_text("# old\n")
        save_default(path, serialize(commit_store))
        assert (tmp_path / "default.ttl.bak").read_text() == "# old\n"
        assert "Commit" in path.read_text()

    def test_save_to_directory(self, tmp_path):
        written = save_default(tmp_path, "# empty\n", backup=False)
        assert written == tmp_path / DEFAULT_GRAPH_FILE
        assert not (tmp_path / "default.ttl.bak").exists()

    def test_bootstrap_only_when_absent(self, tmp_path):
        path = bootstrap_default_graph(tmp_path / "graph")
        assert path.exists()
        assert parse_turtle(path.read_text()).size() == 0

        path.write_text("# edited\n")
        bootstrap_default_graph(tmp_path / "graph")
        assert path.read_text() == "# edited\n"


# =============================================================================
# URI Resolution
# =============================================================================


class TestUriResolver:
    def test_root_prefix(self, tmp_path):
        resolver = UriResolver({"graph://": tmp_path / "graph"})
        assert resolver.is_uri("graph://queries/q.rq")
        assert resolver.resolve("graph://queries/q.rq") == tmp_path / "graph" / "queries" / "q.rq"

    def test_relative_root_uses_base_dir(self, tmp_path):
        resolver = UriResolver({"graph://": Path("graph")}, base_dir=tmp_path)
        assert resolver.resolve("graph://x.rq") == tmp_path / "graph" / "x.rq"

    def test_file_uri_and_plain_path(self, tmp_path):
        resolver = UriResolver(base_dir=tmp_path)
        assert resolver.resolve("file:///etc/hosts") == Path("/etc/hosts")
        assert resolver.resolve("q.rq") == tmp_path / "q.rq"
        assert not resolver.is_uri("q.rq")

    def test_read_text(self, tmp_path):
        (tmp_path / "q.rq").write_text("ASK {}")
        assert UriResolver(base_dir=tmp_path).read_text("q.rq") == "ASK {}"


# =============================================================================
# Load order
# =============================================================================

ORDER_SCRIPT = """
from kgflow.store import parse_turtle
store = parse_turtle('''
@prefix ex: <http://example.org/> .
@prefix git: <https://kgflow.dev/git#> .
ex:c1 a git:Commit . ex:c2 a git:Commit . ex:c3 a git:Commit . ex:c4 a git:Commit .
ex:c4 git:parent ex:c3 . ex:c3 git:parent ex:c2 . ex:c2 git:parent ex:c1 .
''')
rows = store.query("SELECT ?c ?p WHERE { ?c a git:Commit OPTIONAL { ?c git:parent ?p } }").bindings()
print([(row["c"].rsplit("/", 1)[-1], row.get("p", "").rsplit("/", 1)[-1]) for row in rows])
"""


def run_with_hash_seed(seed: str) -> str:
    env = {**os.environ, "PYTHONHASHSEED": seed}
    root = str(Path(__file__).resolve().parents[1])
    env["PYTHONPATH"] = os.pathsep.join(p for p in (root, env.get("PYTHONPATH")) if p)
    completed = subprocess.run(
        [sys.executable, "-c", ORDER_SCRIPT], env=env, capture_output=True, text=True, timeout=60, check=True
    )
    return completed.stdout.strip()


class TestLoadOrder:
    def test_document_order_is_kept(self):
        store = parse_turtle(COMMITS_TTL)
        subjects = [quad.subject for quad in store.match(None, RDF.type, None)]
        assert subjects == [EX.c1, EX.c2, EX.alice, EX.bob]

    def test_query_rows_do_not_depend_on_hash_seed(self):
        outputs = {run_with_hash_seed(seed) for seed in ("0", "1", "2")}
        assert outputs == {
            "[('c1', ''), ('c2', 'c1'), ('c3', 'c2'), ('c4', 'c3')]"
        }
