"""
Tests for the quad store and its SPARQL subset.
"""

import threading

import pytest
from rdflib import Literal, URIRef
from rdflib.namespace import RDF, RDFS, XSD

from kgflow.errors import CancelledError, QueryError, QueryErrorKind
from kgflow.store import DEFAULT_GRAPH, Quad, QuadStore, from_python, to_python
from kgflow.store.sparql import execute, inject_prefixes
from kgflow.vocabulary import EX, GIT

from .support import load


# =============================================================================
# Quad Store
# =============================================================================


class TestQuadStore:
    """Tests for add/remove/match and epochs."""

    def test_empty_store(self, store):
        assert store.size() == 0
        assert store.epoch == 0
        assert store.stats() == {"subjects": 0, "predicates": 0, "objects": 0, "quads": 0}

    def test_add_assigns_epoch(self, store):
        epoch = store.add([(EX.c1, RDF.type, GIT.Commit)])
        assert epoch == 1
        assert store.has(EX.c1, RDF.type, GIT.Commit)
        assert (EX.c1, RDF.type, GIT.Commit) in store

    def test_duplicates_collapse(self, store):
        store.add([(EX.c1, RDF.type, GIT.Commit)])
        epoch = store.add([(EX.c1, RDF.type, GIT.Commit)])
        assert store.size() == 1
        assert epoch == 1  # Nothing changed, no new epoch

    def test_remove(self, store):
        store.add([(EX.c1, RDF.type, GIT.Commit)])
        epoch = store.remove([(EX.c1, RDF.type, GIT.Commit)])
        assert epoch == 2
        assert store.size() == 0
        assert not store.has(EX.c1, RDF.type, GIT.Commit)

    def test_rejects_literal_subject(self, store):
        with pytest.raises(ValueError):
            store.add([(Literal("x"), RDF.type, GIT.Commit)])

    def test_match_wildcards(self, commit_store):
        commits = commit_store.match(None, RDF.type, GIT.Commit)
        assert [q.subject for q in commits] == [EX.c1, EX.c2]
        assert all(q.graph == DEFAULT_GRAPH for q in commits)

    def test_match_since_epoch(self, commit_store):
        before = commit_store.epoch
        commit_store.add([(EX.c3, RDF.type, GIT.Commit)])
        recent = commit_store.match(None, RDF.type, None, since=before)
        assert [q.subject for q in recent] == [EX.c3]

    def test_stats(self, commit_store):
        stats = commit_store.stats()
        assert stats["quads"] == commit_store.size()
        assert stats["subjects"] == 4

    def test_rdf_list_items(self, store):
        load("ex:p ex:steps ( ex:a ex:b ex:c ) .", store)
        head = store.value(EX.p, EX.steps)
        assert store.is_list(head)
        assert store.items(head) == [EX.a, EX.b, EX.c]

    def test_update_is_one_epoch(self, store):
        store.add([(EX.a, EX.p, Literal(1))])
        epoch = store.update(remove=[(EX.a, EX.p, Literal(1))], add=[(EX.a, EX.p, Literal(2))])
        assert epoch == 2
        assert store.value(EX.a, EX.p) == Literal(2)

    def test_copy_is_independent(self, commit_store):
        clone = commit_store.copy()
        clone.add([(EX.c3, RDF.type, GIT.Commit)])
        assert clone.size() == commit_store.size() + 1


class TestDelta:
    """Tests for since(epoch) deltas."""

    def test_added_and_removed(self, store):
        store.add([(EX.a, RDF.type, EX.Thing)])
        start = store.epoch
        store.add([(EX.b, RDF.type, EX.Thing)])
        store.remove([(EX.a, RDF.type, EX.Thing)])
        delta = store.since(start)
        assert [q.subject for q in delta.added] == [EX.b]
        assert [q.subject for q in delta.removed] == [EX.a]
        assert delta.epoch == store.epoch

    def test_add_then_remove_cancels_out(self, store):
        start = store.epoch
        store.add([(EX.a, RDF.type, EX.Thing)])
        store.remove([(EX.a, RDF.type, EX.Thing)])
        assert store.since(start).empty

    def test_since_current_epoch_is_empty(self, commit_store):
        assert commit_store.since(commit_store.epoch).empty


class TestReadWriteLock:
    """Writers serialize; a writer may read reentrantly."""

    def test_writer_can_read(self, store):
        with store.lock.write():
            with store.lock.read():
                assert store.size() == 0

    def test_concurrent_writers_do_not_lose_quads(self, store):
        def writer(n):
            for i in range(50):
                store.add([(EX[f"s{n}_{i}"], RDF.type, EX.Thing)])

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.size() == 200
        assert store.epoch == 200


# =============================================================================
# Terms
# =============================================================================


class TestTerms:
    def test_to_python(self):
        assert to_python(URIRef("http://example.org/a")) == "http://example.org/a"
        assert to_python(Literal(3)) == 3
        assert to_python(Literal("1.5", datatype=XSD.decimal)) == 1.5
        assert to_python(Literal(True)) is True
        assert to_python(Literal("hi", lang="en")) == "hi"
        assert to_python(None) is None

    def test_from_python(self):
        assert from_python("x") == Literal("x")
        assert from_python(EX.a) == EX.a
        assert from_python(4) == Literal(4)


# =============================================================================
# SPARQL
# =============================================================================


class TestSelect:
    def test_basic_pattern(self, commit_store):
        result = commit_store.query("SELECT ?c WHERE { ?c rdf:type git:Commit }")
        assert result.type == "select"
        assert result.variables == ["c"]
        assert result.bindings() == [{"c": str(EX.c1)}, {"c": str(EX.c2)}]

    def test_a_keyword_and_join(self, commit_store):
        result = commit_store.query(
            """
            SELECT ?c ?name WHERE {
                ?c a git:Commit ; git:author ?who .
                ?who rdfs:label ?name .
            }
            """
        )
        assert [row["name"] for row in result.bindings()] == ["Alice", "Bob"]

    def test_filter_relational(self, commit_store):
        result = commit_store.query("SELECT ?c WHERE { ?c git:additions ?n FILTER(?n > 20) }")
        assert result.bindings() == [{"c": str(EX.c2)}]

    def test_filter_regex(self, commit_store):
        result = commit_store.query('SELECT ?m WHERE { ?c git:message ?m FILTER regex(?m, "^fix", "i") }')
        assert result.bindings() == [{"m": "Fix parser"}]

    def test_optional_leaves_unbound(self, commit_store):
        load("ex:c3 a git:Commit .", commit_store)
        result = commit_store.query(
            "SELECT ?c ?m WHERE { ?c a git:Commit OPTIONAL { ?c git:message ?m } } ORDER BY ?c"
        )
        rows = result.bindings()
        assert len(rows) == 3
        assert rows[2] == {"c": str(EX.c3)}

    def test_union(self, commit_store):
        result = commit_store.query(
            "SELECT ?x WHERE { { ?x a git:Commit } UNION { ?x a ex:Person } }"
        )
        assert result.count == 4

    def test_bind_and_values(self, commit_store):
        result = commit_store.query(
            """
            SELECT ?c ?double WHERE {
                VALUES ?c { ex:c2 }
                ?c git:additions ?n .
                BIND(?n * 2 AS ?double)
            }
            """
        )
        assert result.bindings() == [{"c": str(EX.c2), "double": 64}]

    def test_order_limit_offset(self, commit_store):
        result = commit_store.query(
            "SELECT ?n WHERE { ?c git:additions ?n } ORDER BY DESC(?n) LIMIT 1 OFFSET 1"
        )
        assert result.bindings() == [{"n": 10}]

    def test_distinct(self, commit_store):
        result = commit_store.query("SELECT DISTINCT ?t WHERE { ?s a ?t }")
        assert result.count == 2

    def test_distinct_keeps_first_occurrence_in_order(self, store):
        load(
            """
            ex:p1 ex:name "alice" ; ex:age 20 .
            ex:p2 ex:name "bob" ; ex:age 25 .
            ex:p3 ex:name "alice" ; ex:age 30 .
            """,
            store,
        )
        result = store.query("SELECT DISTINCT ?n WHERE { ?p ex:name ?n ; ex:age ?a } ORDER BY ?a")
        assert [row["n"] for row in result.bindings()] == ["alice", "bob"]

    def test_rows_follow_document_order(self, commit_store):
        result = commit_store.query("SELECT ?c ?m WHERE { ?c a git:Commit ; git:message ?m }")
        assert [row["c"] for row in result.bindings()] == [str(EX.c1), str(EX.c2)]


    def test_property_path_sequence(self, commit_store):
        result = commit_store.query("SELECT ?name WHERE { ex:c1 git:author/rdfs:label ?name }")
        assert result.bindings() == [{"name": "Alice"}]

    def test_property_path_inverse(self, commit_store):
        result = commit_store.query("SELECT ?c WHERE { ex:bob ^git:author ?c }")
        assert result.bindings() == [{"c": str(EX.c2)}]

    def test_property_path_closure(self, store):
        load("ex:a ex:next ex:b . ex:b ex:next ex:c .", store)
        plus = store.query("SELECT ?x WHERE { ex:a ex:next+ ?x }")
        star = store.query("SELECT ?x WHERE { ex:a ex:next* ?x }")
        optional = store.query("SELECT ?x WHERE { ex:a ex:next? ?x }")
        assert {r["x"] for r in plus.bindings()} == {str(EX.b), str(EX.c)}
        assert {r["x"] for r in star.bindings()} == {str(EX.a), str(EX.b), str(EX.c)}
        assert {r["x"] for r in optional.bindings()} == {str(EX.a), str(EX.b)}

    def test_initial_bindings(self, commit_store):
        result = commit_store.query("SELECT ?m WHERE { ?c git:message ?m }", bindings={"c": EX.c1})
        assert result.bindings() == [{"m": "Initial import"}]

    def test_pure_and_repeatable(self, commit_store):
        query = "SELECT ?c ?n WHERE { ?c git:additions ?n } ORDER BY ?n"
        assert commit_store.query(query).to_dict() == commit_store.query(query).to_dict()


class TestAggregates:
    def test_count(self, commit_store):
        result = commit_store.query("SELECT (COUNT(?c) AS ?n) WHERE { ?c a git:Commit }")
        assert result.bindings() == [{"n": 2}]

    def test_sum_min_max_avg(self, commit_store):
        result = commit_store.query(
            """
            SELECT (SUM(?a) AS ?total) (MIN(?a) AS ?lo) (MAX(?a) AS ?hi) (AVG(?a) AS ?mean)
            WHERE { ?c git:additions ?a }
            """
        )
        row = result.bindings()[0]
        assert row["total"] == 42
        assert row["lo"] == 10
        assert row["hi"] == 32
        assert row["mean"] == 21

    def test_group_by_having(self, commit_store):
        load("ex:c3 a git:Commit ; git:author ex:bob .", commit_store)
        result = commit_store.query(
            """
            SELECT ?who (COUNT(?c) AS ?n) WHERE { ?c git:author ?who }
            GROUP BY ?who HAVING (COUNT(?c) > 1)
            """
        )
        assert result.bindings() == [{"who": str(EX.bob), "n": 2}]

    def test_sum_of_strings_is_type_mismatch(self, commit_store):
        with pytest.raises(QueryError) as exc_info:
            commit_store.query("SELECT (SUM(?m) AS ?s) WHERE { ?c git:message ?m }")
        assert exc_info.value.query_kind == QueryErrorKind.TYPE_MISMATCH


class TestOtherForms:
    def test_ask(self, commit_store):
        assert commit_store.query("ASK { ex:c1 a git:Commit }").boolean is True
        assert commit_store.query("ASK { ex:c9 a git:Commit }").boolean is False

    def test_construct(self, commit_store):
        result = commit_store.query(
            "CONSTRUCT { ?c ex:writtenBy ?who } WHERE { ?c git:author ?who }"
        )
        assert result.type == "construct"
        assert result.count == 2
        assert result.to_dict()["quads"][0]["predicate"] == str(EX.writtenBy)

    def test_describe(self, commit_store):
        result = commit_store.query("DESCRIBE ex:alice")
        assert result.type == "describe"
        assert {q.predicate for q in result.quads} == {RDF.type, RDFS.label}

    def test_insert_data(self, store):
        result = store.query(
            "INSERT DATA { <http://example.org/c1> a <https://kgflow.dev/git#Commit> }"
        )
        assert result.type == "update"
        assert result.ok is True
        assert result.metadata == {"inserted": 1, "deleted": 0, "epoch": 1}
        assert store.has(EX.c1, RDF.type, GIT.Commit)

    def test_insert_where(self, commit_store):
        before = commit_store.epoch
        result = commit_store.query(
            "INSERT { ?c ex:reviewed true } WHERE { ?c a git:Commit }"
        )
        assert result.metadata["inserted"] == 2
        assert commit_store.epoch == before + 1
        assert commit_store.has(EX.c1, EX.reviewed, Literal(True))

    def test_delete_where(self, commit_store):
        commit_store.query("DELETE WHERE { ?c git:message ?m }")
        assert commit_store.query("ASK { ?c git:message ?m }").boolean is False

    def test_modify_is_one_epoch_and_sees_its_own_writes(self, commit_store):
        before = commit_store.epoch
        result = commit_store.query(
            'DELETE { ?c git:message ?m } INSERT { ?c git:message "rewritten" } WHERE { ?c git:message ?m } ;'
            ' INSERT { ?c ex:checked true } WHERE { ?c git:message "rewritten" }'
        )
        assert commit_store.epoch == before + 1
        assert result.metadata["inserted"] == 4
        assert result.metadata["deleted"] == 2
        assert commit_store.has(EX.c2, EX.checked, Literal(True))

    def test_update_with_nothing_to_change_keeps_the_epoch(self, commit_store):
        before = commit_store.epoch
        result = commit_store.query("DELETE WHERE { ?c ex:missing ?x }")
        assert result.metadata == {"inserted": 0, "deleted": 0, "epoch": before}

    def test_aborted_update_leaves_store_unchanged(self, commit_store):
        before, size = commit_store.epoch, len(commit_store)
        abort = threading.Event()
        abort.set()
        with pytest.raises(CancelledError):
            execute(commit_store, "INSERT DATA { ex:c3 a git:Commit }", abort=abort)
        assert commit_store.epoch == before
        assert len(commit_store) == size
        assert not commit_store.has(EX.c3, RDF.type, GIT.Commit)



class TestPrefixInjection:
    def test_known_prefix_injected_when_used_in_store(self, commit_store):
        text = inject_prefixes("SELECT ?c WHERE { ?c a git:Commit }", commit_store)
        assert text.startswith("PREFIX git: <https://kgflow.dev/git#>")

    def test_declared_prefix_left_alone(self, commit_store):
        query = "PREFIX git: <urn:other#>\nSELECT ?c WHERE { ?c a git:Commit }"
        assert inject_prefixes(query, commit_store) == query

    def test_well_known_prefix_without_store_usage_not_injected(self):
        store = QuadStore([Quad(EX.a, RDF.type, EX.Thing, DEFAULT_GRAPH)])
        with pytest.raises(QueryError) as exc_info:
            store.query("SELECT ?s WHERE { ?s a foaf:Person }")
        assert exc_info.value.query_kind == QueryErrorKind.SYNTAX


class TestQueryErrors:
    def test_syntax_error(self, commit_store):
        with pytest.raises(QueryError) as exc_info:
            commit_store.query("SELECT WHERE {")
        assert exc_info.value.query_kind == QueryErrorKind.SYNTAX

    def test_unbound_projection(self, commit_store):
        with pytest.raises(QueryError) as exc_info:
            commit_store.query("SELECT ?missing WHERE { ?c a git:Commit }")
        assert exc_info.value.query_kind == QueryErrorKind.UNBOUND_VARIABLE

    @pytest.mark.parametrize(
        "query",
        [
            "SELECT ?s WHERE { GRAPH ?g { ?s ?p ?o } }",
            "SELECT ?s WHERE { ?s ?p ?o MINUS { ?s a git:Commit } }",
            "SELECT ?s WHERE { SERVICE <http://example.org/sparql> { ?s ?p ?o } }",
            "SELECT ?c WHERE { { SELECT ?c WHERE { ?c a git:Commit } } }",
            "SELECT ?c WHERE { ?c !git:author ?o }",
            "WITH <http://example.org/g> DELETE { ?c git:message ?m } WHERE { ?c git:message ?m }",
            "INSERT DATA { GRAPH <http://example.org/g> { ex:c1 ex:seen true } }",
            "LOAD <http://example.org/data.ttl>",

            "CLEAR ALL",
        ],
    )
    def test_unsupported_features(self, commit_store, query):
        with pytest.raises(QueryError) as exc_info:
            commit_store.query(query)
        assert exc_info.value.query_kind == QueryErrorKind.UNSUPPORTED

    def test_error_serializes(self, commit_store):
        with pytest.raises(QueryError) as exc_info:
            commit_store.query("SELECT ?x WHERE { ?x")
        data = exc_info.value.to_dict()
        assert data["kind"] == "QueryError"
        assert data["queryKind"] == "Syntax"
