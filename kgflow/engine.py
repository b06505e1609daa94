"""
KnowledgeEngine: one object wiring the store, durable I/O, workflow executor
and hook engine together from ``EngineSettings``.

Usage:
    engine = KnowledgeEngine.from_settings(get_settings())
    engine.load()
    run = await engine.run("report", inputs={"limit": 5})
    receipts = await engine.tick()
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from kgflow.clock import Clock
from kgflow.config import EngineSettings, get_settings
from kgflow.durable import DurableIO, JobRecord, ReconcileReport
from kgflow.hooks import HookEngine
from kgflow.observability import EngineMetrics, get_metrics
from kgflow.store import LoadResult, QuadStore, QueryResult, UriResolver, load_directory, save_default, serialize
from kgflow.store.turtle import DEFAULT_GRAPH_FILE, bootstrap_default_graph
from kgflow.workflow import (
    CancellationToken,
    FileSystem,
    HandlerEnv,
    HandlerRegistry,
    LocalFileSystem,
    TemplateRenderer,
    ValidationReport,
    WorkflowExecutor,
    WorkflowRun,
    WorkflowSummary,
)
from kgflow.workflow.handlers.cli import ProcessLauncher

logger = logging.getLogger(__name__)


class KnowledgeEngine:
    def __init__(
        self,
        settings: EngineSettings,
        store: QuadStore | None = None,
        fs: FileSystem | None = None,
        http: httpx.AsyncClient | None = None,
        launcher: ProcessLauncher | None = None,
        registry: HandlerRegistry | None = None,
        metrics: EngineMetrics | None = None,
    ):
        self.settings = settings
        self.clock = Clock(settings.now)
        self.store = store if store is not None else QuadStore()
        self.metrics = metrics or get_metrics()
        self.resolver = UriResolver(settings.resolved_uri_roots())
        self.durable = DurableIO.from_settings(settings, clock=self.clock)

        self.http = http
        self.env = HandlerEnv(
            store=self.store,
            renderer=TemplateRenderer(strict=settings.strict_templates, clock=self.clock),
            fs=fs or LocalFileSystem(),
            http=self.http,
            launcher=launcher or ProcessLauncher(),
            resolver=self.resolver,
            clock=self.clock,
            default_timeout_s=settings.step_timeout_s,
        )
        self.executor = WorkflowExecutor(
            self.store,
            durable=self.durable,
            env=self.env,
            registry=registry,
            metrics=self.metrics,
            workflow_timeout_s=settings.workflow_timeout_s,
        )
        self.hooks = HookEngine(
            self.store,
            action=self.executor.fire_hook,
            receipts=self.durable.receipts,
            clock=self.clock,
            metrics=self.metrics,
            resolver=self.resolver,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings | None = None, **kwargs: Any) -> KnowledgeEngine:
        return cls(settings or get_settings(), **kwargs)

    # -------------------------------------------------------------------------
    # Graph
    # -------------------------------------------------------------------------

    def load(self) -> LoadResult:
        """Load the graph directory into the store and re-seed hook state."""
        result = load_directory(self.settings.graph_dir, self.store)
        self.hooks.seed_from_receipts()
        return result

    def start(self) -> LoadResult:
        """Reconcile the durable namespace, then load the graph."""
        report = self.reconcile()
        if report.repaired:
            logger.info(f"[engine] reconciliation repaired {report.repaired} items")
        return self.load()

    def init_graph(self):
        return bootstrap_default_graph(self.settings.graph_dir)

    def save(self, backup: bool = True):
        return save_default(self.settings.graph_dir / DEFAULT_GRAPH_FILE, serialize(self.store), backup=backup)

    def query(self, text: str, bindings: dict[str, Any] | None = None) -> QueryResult:
        return self.store.query(text, bindings)

    # -------------------------------------------------------------------------
    # Workflows
    # -------------------------------------------------------------------------

    def list_workflows(self) -> list[WorkflowSummary]:
        return self.executor.parser.list(self.store)

    def validate(self, workflow_id: str) -> ValidationReport:
        return self.executor.parser.validate(self.store, workflow_id)

    async def run(
        self,
        workflow_id: str,
        inputs: dict[str, Any] | None = None,
        token: CancellationToken | None = None,
    ) -> WorkflowRun:
        return await self.executor.execute(workflow_id, inputs=inputs, token=token)

    def enqueue(self, workflow_id: str, inputs: dict[str, Any] | None = None, level: str = "normal") -> JobRecord:
        return self.durable.queue.enqueue({"workflowId": workflow_id, "inputs": dict(inputs or {})}, level=level)

    async def drain(self) -> list[JobRecord]:
        """Run queued jobs on a worker pool until the queue is empty."""
        pool = self.durable.worker_pool(self.executor.run_job, size=self.settings.worker_count)
        return await pool.run_until_idle()

    # -------------------------------------------------------------------------
    # Hooks and maintenance
    # -------------------------------------------------------------------------

    async def tick(self) -> list[Any]:
        return await self.hooks.tick()

    def reconcile(self) -> ReconcileReport:
        return self.durable.reconciler.reconcile()

    def __repr__(self) -> str:
        return f"KnowledgeEngine(graph_dir={self.settings.graph_dir}, store={self.store!r})"


__all__ = ["KnowledgeEngine"]
