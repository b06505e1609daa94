"""
End-to-end scenarios through the KnowledgeEngine: graph files on disk,
durable I/O in a temporary directory.
"""

import asyncio
import json

import pytest

from kgflow.clock import parse_instant
from kgflow.config import EngineSettings
from kgflow.engine import KnowledgeEngine
from kgflow.observability import EngineMetrics
from kgflow.workflow import LocalFileSystem, MemoryFileSystem
from kgflow.workflow.handlers.cli import CommandResult

from .support import FIXED_NOW, PREFIXES, load

ONE_COMMIT = """
ex:c1 rdf:type git:Commit ; git:message "Initial import" ; git:additions 10 .
"""

SECOND_COMMIT = """
ex:c2 rdf:type git:Commit ; git:message "Fix parser" ; git:additions 32 .
"""


class SlowLauncher:
    """Process launcher whose commands take ``delay`` seconds."""

    def __init__(self, delay):
        self.delay = delay

    async def run(self, command, cwd=None, env=None, timeout=None):
        await asyncio.sleep(self.delay)
        return CommandResult(stdout=f"{command}\n", stderr="", exit_code=0)


def make_engine(tmp_path, graph, now=FIXED_NOW, **kwargs):
    graph_dir = tmp_path / "graph"
    graph_dir.mkdir(exist_ok=True)
    (graph_dir / "scenario.ttl").write_text(PREFIXES + graph)
    settings_fields = {key: kwargs.pop(key) for key in list(kwargs) if key in EngineSettings.model_fields}
    settings = EngineSettings(graph_dir=graph_dir, durable_dir=tmp_path / ".kgflow", now=now, **settings_fields)
    engine = KnowledgeEngine(settings, metrics=EngineMetrics(), **kwargs)
    engine.start()
    return engine


# =============================================================================
# Scenario 1: single SPARQL step
# =============================================================================


class TestSingleSparqlWorkflow:
    @pytest.mark.asyncio
    async def test_commits_in_context(self, tmp_path):
        engine = make_engine(
            tmp_path,
            ONE_COMMIT
            + """
            ex:commits a hk:Hook ; hk:orderedPipelines ( ex:main ) .
            ex:main a op:Pipeline ; op:steps ( ex:select ) .
            ex:select a wf:SparqlStep ;
                wf:text "SELECT ?c WHERE { ?c rdf:type git:Commit }" ;
                wf:outputMapping "{\\"commits\\": \\"results\\"}" .
            """,
        )
        run = await engine.run("commits")
        result = run.result("select")
        assert result.success
        assert result.data["count"] == 1
        assert run.context.get("commits") == [{"c": "http://example.org/c1"}]


# =============================================================================
# Scenario 2: SPARQL feeding a template that writes a file
# =============================================================================


class TestSparqlToTemplate:
    @pytest.mark.asyncio
    async def test_report_file(self, tmp_path):
        workdir = tmp_path / "work"
        engine = make_engine(
            tmp_path,
            ONE_COMMIT
            + SECOND_COMMIT
            + """
            ex:report a hk:Hook ; hk:orderedPipelines ( ex:main ) .
            ex:main a op:Pipeline ; op:steps ( ex:stepA ex:stepB ) .
            ex:stepA a wf:SparqlStep ;
                wf:text "SELECT ?c WHERE { ?c rdf:type git:Commit }" ;
                wf:outputMapping "{\\"items\\": \\"results\\"}" .
            ex:stepB a wf:TemplateStep ;
                wf:template "Found {{ items | length }} commits" ;
                wf:outputPath "./out/report.txt" ;
                wf:dependsOn ex:stepA .
            """,
            fs=LocalFileSystem(workdir),
        )
        run = await engine.run("report")
        assert run.success
        assert (workdir / "out" / "report.txt").read_text() == "Found 2 commits"


# =============================================================================
# Scenario 3: threshold hook firing
# =============================================================================


class TestThresholdHook:
    @pytest.mark.asyncio
    async def test_fires_once_on_crossing(self, tmp_path):
        engine = make_engine(
            tmp_path,
            ONE_COMMIT
            + """
            ex:busy a hk:Hook ;
                hk:hasPredicate [ a hk:Threshold ;
                                  hk:query "SELECT ?c WHERE { ?c rdf:type git:Commit }" ;
                                  hk:threshold 2 ;
                                  hk:operator ">=" ] .
            """,
        )
        assert await engine.tick() == []

        load(SECOND_COMMIT, engine.store)
        [receipt] = await engine.tick()
        assert receipt.hook_id == "busy"
        assert receipt.success is True
        assert receipt.evidence["count"] == 2
        assert len(engine.durable.receipts.receipts()) == 1

        load('ex:c3 rdf:type git:Commit ; git:message "More" .', engine.store)
        assert await engine.tick() == []
        assert len(engine.durable.receipts.receipts()) == 1

        engine.hooks.reset("busy")
        assert len(await engine.tick()) == 1
        assert engine.durable.receipts.verify_chain() == []

    @pytest.mark.asyncio
    async def test_delta_fingerprint_survives_restart(self, tmp_path):
        graph = (
            ONE_COMMIT
            + """
            ex:changes a hk:Hook ;
                hk:hasPredicate [ a hk:ResultDelta ; hk:query "SELECT ?c WHERE { ?c rdf:type git:Commit }" ] .
            """
        )
        first = make_engine(tmp_path, graph)
        assert len(await first.tick()) == 1
        assert await first.tick() == []

        restarted = make_engine(tmp_path, graph)
        assert await restarted.tick() == []


# =============================================================================
# Scenario 4: cycle detection
# =============================================================================


class TestCycleDetection:
    def test_validate_reports_cycle_without_receipt(self, tmp_path):
        engine = make_engine(
            tmp_path,
            """
            ex:cyclic a hk:Hook ; hk:orderedPipelines ( ex:main ) .
            ex:main a op:Pipeline ; op:steps ( ex:A ex:B ) .
            ex:A a wf:TemplateStep ; wf:text "a" ; wf:dependsOn ex:B .
            ex:B a wf:TemplateStep ; wf:text "b" ; wf:dependsOn ex:A .
            """,
        )
        report = engine.validate("cyclic")
        assert not report.valid
        assert report.error_kinds() == ["CycleError"]
        assert {"A", "B"} <= set(report.errors[0]["stepIds"])
        assert engine.durable.receipts.receipts() == []


# =============================================================================
# Scenario 5: lock mutual exclusion
# =============================================================================

LOCKED_WORKFLOWS = """
ex:first a hk:Hook ; hk:orderedPipelines ( ex:firstMain ) ; wf:lock "build" .
ex:firstMain a op:Pipeline ; op:steps ( ex:buildOne ) .
ex:buildOne a wf:CliStep ; wf:command "make one" .

ex:second a hk:Hook ; hk:orderedPipelines ( ex:secondMain ) ; wf:lock "build" .
ex:secondMain a op:Pipeline ; op:steps ( ex:buildTwo ) .
ex:buildTwo a wf:CliStep ; wf:command "make two" .
"""


class TestLockMutualExclusion:
    @pytest.mark.asyncio
    async def test_waiter_runs_after_release(self, tmp_path):
        engine = make_engine(tmp_path, LOCKED_WORKFLOWS, now=None, launcher=SlowLauncher(0.2))
        runs = await asyncio.gather(engine.run("first"), engine.run("second"))
        assert all(run.success for run in runs)

        receipts = sorted(engine.durable.receipts.receipts(), key=lambda r: parse_instant(r.started_at))
        assert len(receipts) == 2
        earlier, later = receipts
        assert parse_instant(earlier.started_at) < parse_instant(later.started_at)
        assert parse_instant(earlier.ended_at) <= parse_instant(later.started_at)
        assert not engine.durable.locks.is_locked("build")

    @pytest.mark.asyncio
    async def test_short_deadline_fails_the_waiter(self, tmp_path):
        engine = make_engine(
            tmp_path,
            LOCKED_WORKFLOWS,
            now=None,
            lock_deadline_ms=50,
            launcher=SlowLauncher(0.3),
        )
        runs = await asyncio.gather(engine.run("first"), engine.run("second"))
        statuses = sorted(run.status for run in runs)
        assert statuses == ["failed", "success"]
        [loser] = [run for run in runs if not run.success]
        assert loser.error["kind"] == "LockError"
        assert loser.step_results == []


# =============================================================================
# Scenario 6: deterministic re-execution
# =============================================================================


class TestDeterministicReexecution:
    @pytest.mark.asyncio
    async def test_identical_exports(self, tmp_path):
        engine = make_engine(
            tmp_path,
            ONE_COMMIT
            + SECOND_COMMIT
            + """
            ex:summary a hk:Hook ; hk:orderedPipelines ( ex:main ) .
            ex:main a op:Pipeline ; op:steps ( ex:collect ex:render ex:save ) .
            ex:collect a wf:SparqlStep ;
                wf:text "SELECT ?m ?n WHERE { ?c git:message ?m ; git:additions ?n } ORDER BY ?m" ;
                wf:outputMapping "{\\"rows\\": \\"results\\"}" .
            ex:render a wf:TemplateStep ;
                wf:text "{{ now().isoformat() }}: {{ rows | sum(attribute='n') }} additions by {{ limit }}" ;
                wf:dependsOn ex:collect .
            ex:save a wf:FileStep ;
                wf:operation "write" ;
                wf:filePath "out/summary.txt" ;
                wf:content "{{ render.content }}" ;
                wf:dependsOn ex:render .
            """,
            fs=MemoryFileSystem(),
        )
        epoch = engine.store.epoch
        first = await engine.run("summary", inputs={"limit": 3})
        second = await engine.run("summary", inputs={"limit": 3})

        assert first.success and second.success
        assert engine.store.epoch == epoch

        def exported(run):
            return json.dumps(run.context.export(include_history=True), sort_keys=True)

        assert exported(first) == exported(second)
        assert first.context.get("render")["content"] == "2024-01-01T00:00:00+00:00: 42 additions by 3"

        def comparable(receipt):
            data = receipt.to_dict()
            for key in ("index", "executionId", "prevHash", "hash", "signature"):
                data.pop(key)
            return data

        assert comparable(first.receipt) == comparable(second.receipt)
        assert second.receipt.prev_hash == first.receipt.hash
