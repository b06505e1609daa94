"""
Tests for the kgflow command line.
"""

import json
import logging

import click
import pytest
from click.testing import CliRunner

from kgflow.cli import _parse_inputs, cli
from kgflow.config import EngineSettings
from kgflow.durable import GitStore
from kgflow.engine import KnowledgeEngine
from kgflow.errors import ExitCode
from kgflow.workflow import MemoryFileSystem

from .support import COMMITS_TTL

WORKFLOWS = """
ex:report a hk:Hook ;
    dct:title "Commit report" ;
    hk:hasPredicate [ a hk:Threshold ;
                      hk:query "SELECT ?c WHERE { ?c a git:Commit }" ;
                      hk:threshold 2 ;
                      hk:operator ">=" ] ;
    hk:orderedPipelines ( ex:main ) .
ex:main a op:Pipeline ; op:steps ( ex:commits ex:render ) .
ex:commits a wf:SparqlStep ;
    wf:text "SELECT ?c WHERE { ?c a git:Commit }" ;
    wf:outputMapping "{\\"items\\": \\"results\\"}" .
ex:render a wf:TemplateStep ;
    wf:text "Found {{ items | length }} commits, limit {{ limit }}" ;
    wf:dependsOn ex:commits .

ex:broken a hk:Hook ; hk:orderedPipelines ( ex:brokenMain ) .
ex:brokenMain a op:Pipeline ; op:steps ( ex:bad ) .
ex:bad a wf:TemplateStep ; wf:text "{{ x | upper }}" .

ex:loop a hk:Hook ; hk:orderedPipelines ( ex:loopMain ) .
ex:loopMain a op:Pipeline ; op:steps ( ex:a ex:b ) .
ex:a a wf:TemplateStep ; wf:text "a" ; wf:dependsOn ex:b .
ex:b a wf:TemplateStep ; wf:text "b" ; wf:dependsOn ex:a .
"""


@pytest.fixture
def settings(tmp_path):
    graph_dir = tmp_path / "graph"
    graph_dir.mkdir()
    (graph_dir / "workflows.ttl").write_text(COMMITS_TTL + WORKFLOWS)
    return EngineSettings(
        graph_dir=graph_dir,
        durable_dir=tmp_path / ".kgflow",
        now="2024-01-01T00:00:00Z",
        log_level="WARNING",
    )


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def invoke(settings):
    runner = CliRunner()

    def factory():
        return KnowledgeEngine(settings, fs=MemoryFileSystem())

    def run(*args):
        return runner.invoke(cli, list(args), obj={"engine_factory": factory})

    return run


def output_json(result):
    # Logs go to stderr; stdout carries only the JSON document
    return json.loads(result.stdout)


# =============================================================================
# Graph and workflows
# =============================================================================


class TestInit:
    def test_creates_default_graph_once(self, tmp_path):
        settings = EngineSettings(graph_dir=tmp_path / "fresh", durable_dir=tmp_path / ".kgflow")
        obj = {"engine_factory": lambda: KnowledgeEngine(settings)}
        result = CliRunner().invoke(cli, ["init"], obj=obj)
        assert result.exit_code == 0
        default = tmp_path / "fresh" / "default.ttl"
        assert result.stdout.strip() == str(default)
        default.write_text("# edited\n")
        CliRunner().invoke(cli, ["init"], obj=obj)
        assert default.read_text() == "# edited\n"


class TestList:
    def test_lists_workflows(self, invoke):
        result = invoke("list")
        assert result.exit_code == 0
        summaries = {s["id"]: s for s in output_json(result)}
        assert set(summaries) == {"report", "broken", "loop"}
        assert summaries["report"]["title"] == "Commit report"
        assert summaries["report"]["stepCount"] == 2


class TestValidate:
    def test_valid(self, invoke):
        result = invoke("validate", "report")
        assert result.exit_code == ExitCode.OK
        assert output_json(result)["valid"] is True

    def test_cycle(self, invoke):
        result = invoke("validate", "loop")
        assert result.exit_code == ExitCode.VALIDATION
        report = output_json(result)
        assert report["errors"][0]["kind"] == "CycleError"
        assert sorted(report["errors"][0]["stepIds"]) == ["a", "b"]

    def test_not_found(self, invoke):
        result = invoke("validate", "missing")
        assert result.exit_code == ExitCode.NOT_FOUND


# =============================================================================
# Running
# =============================================================================


class TestRun:
    def test_success(self, invoke):
        result = invoke("run", "report", "-i", "limit=5")
        assert result.exit_code == ExitCode.OK
        data = output_json(result)
        assert data["status"] == "success"
        assert data["context"]["render"]["content"] == "Found 2 commits, limit 5"
        assert data["startedAt"] == "2024-01-01T00:00:00.000Z"
        assert data["receipt"]["index"] == 1

    def test_inputs_json(self, invoke):
        result = invoke("run", "report", "--inputs-json", '{"limit": 7}')
        assert output_json(result)["context"]["limit"] == 7

    def test_failed_step(self, invoke):
        result = invoke("run", "broken")
        assert result.exit_code == ExitCode.FAILED
        assert output_json(result)["error"]["stepId"] == "bad"

    def test_not_found(self, invoke):
        assert invoke("run", "missing").exit_code == ExitCode.NOT_FOUND

    def test_cycle(self, invoke):
        assert invoke("run", "loop").exit_code == ExitCode.VALIDATION

    def test_bad_input_pair(self, invoke):
        result = invoke("run", "report", "-i", "novalue")
        assert result.exit_code == 2
        assert "expected key=value" in result.output


class TestParseInputs:
    def test_values_are_json_when_possible(self):
        inputs = _parse_inputs(("n=3", "flag=true", "name=alice", "tags=[1, 2]"), None)
        assert inputs == {"n": 3, "flag": True, "name": "alice", "tags": [1, 2]}

    def test_pairs_override_json(self):
        assert _parse_inputs(("n=2",), '{"n": 1, "m": 1}') == {"n": 2, "m": 1}

    def test_json_must_be_object(self):
        with pytest.raises(click.BadParameter):
            _parse_inputs((), "[1]")


# =============================================================================
# Hooks, queries and durable state
# =============================================================================


class TestTick:
    def test_threshold_hook_fires(self, invoke):
        result = invoke("tick")
        assert result.exit_code == 0
        [receipt] = output_json(result)
        assert receipt["hookId"] == "report"
        assert receipt["status"] == "success"


class TestQuery:
    def test_select(self, invoke):
        result = invoke("query", "SELECT ?m WHERE { ?c git:message ?m } ORDER BY ?m")
        assert result.exit_code == 0
        data = output_json(result)
        assert data["results"] == [{"m": "Fix parser"}, {"m": "Initial import"}]

    def test_error(self, invoke):
        result = invoke("query", "SELECT WHERE {")
        assert result.exit_code == ExitCode.FAILED


class TestReceipts:
    def test_show_and_verify(self, invoke):
        invoke("run", "report")
        invoke("run", "broken")
        shown = output_json(invoke("receipts"))
        assert [r["workflowId"] for r in shown] == ["report", "broken"]
        assert [r["index"] for r in output_json(invoke("receipts", "--limit", "1"))] == [2]

        verified = invoke("receipts", "--verify")
        assert verified.exit_code == 0
        assert "chain ok" in verified.output

    def test_tampered_chain(self, invoke, settings):
        invoke("run", "report")
        git = GitStore(settings.durable_dir / "git")
        ref = "refs/notes/kgflow/receipts/00000001"
        data = json.loads(git.read_blob(git.read_ref(ref)))
        data["status"] = "failed"
        git.set_ref(ref, git.write_json(data))
        git.close()
        result = invoke("receipts", "--verify")
        assert result.exit_code == ExitCode.FAILED


class TestReconcile:
    def test_report(self, invoke):
        result = invoke("reconcile")
        assert result.exit_code == 0
        assert output_json(result)["releasedLocks"] == []
