"""
Workflow Executor.

Runs a workflow end to end:

    parse -> plan -> [acquire wf:lock] -> waves -> [release] -> receipt

Steps of one wave run concurrently; their results are applied to the
context in plan order once the whole wave has finished, so the context
(and its export) does not depend on which sibling finished first.

A failed step stops the run unless its error policy sets continueOnError.
Parse and validation errors are raised before anything executes and
produce no receipt. Every run that starts yields exactly one receipt; when
the receipt cannot be written the run is reported as failed.

Usage:
    executor = WorkflowExecutor(store, durable=DurableIO(root))
    run = await executor.execute("report", inputs={"limit": 10})
    if not run.success:
        print(run.error)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from kgflow.clock import Clock
from kgflow.durable.io import DurableIO
from kgflow.durable.locks import LockHandle
from kgflow.durable.queue import JobRecord
from kgflow.durable.receipts import Receipt
from kgflow.errors import CancelledError, DurableIoError, ExitCode, KgflowError, LockError
from kgflow.hooks.models import Evaluation, Hook
from kgflow.observability import EngineMetrics, WorkflowLogger, get_metrics
from kgflow.store.quadstore import QuadStore

from .cancellation import CancellationToken
from .context import ExecutionContext
from .handlers.base import HandlerEnv
from .handlers.registry import HandlerRegistry
from .models import PlannedStep, StepResult, Workflow
from .parser import WorkflowParser
from .planner import DAGPlanner
from .runtime import StepRunner
from .templating import TemplateRenderer

logger = logging.getLogger(__name__)

STATUS_EXIT_CODES = {
    "success": ExitCode.OK,
    "failed": ExitCode.FAILED,
    "cancelled": ExitCode.CANCELLED,
    "timeout": ExitCode.TIMEOUT,
}


@dataclass
class WorkflowRun:
    """Outcome of one workflow execution."""

    workflow_id: str
    execution_id: str
    status: str
    context: ExecutionContext
    step_results: list[StepResult] = field(default_factory=list)
    receipt: Receipt | None = None
    error: dict[str, Any] | None = None
    started_at: str = ""
    ended_at: str = ""
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == "success"

    @property
    def exit_code(self) -> ExitCode:
        return STATUS_EXIT_CODES.get(self.status, ExitCode.FAILED)

    def result(self, step_id: str) -> StepResult | None:
        for result in self.step_results:
            if result.step_id == step_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "executionId": self.execution_id,
            "status": self.status,
            "success": self.success,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
            "context": self.context.outputs(),
            "stepResults": [r.to_dict() for r in self.step_results],
            "error": self.error,
            "receipt": self.receipt.to_dict() if self.receipt else None,
        }


class WorkflowExecutor:
    def __init__(
        self,
        store: QuadStore,
        durable: DurableIO | None = None,
        env: HandlerEnv | None = None,
        registry: HandlerRegistry | None = None,
        parser: WorkflowParser | None = None,
        planner: DAGPlanner | None = None,
        clock: Clock | None = None,
        metrics: EngineMetrics | None = None,
        workflow_timeout_s: float = 300.0,
    ):
        self.store = store
        self.durable = durable
        self.clock = clock or (env.clock if env is not None else Clock())
        self.env = env or HandlerEnv(store=store, renderer=TemplateRenderer(clock=self.clock), clock=self.clock)
        self.parser = parser or WorkflowParser(self.env.resolver)
        self.planner = planner or DAGPlanner()
        self.metrics = metrics or get_metrics()
        self.runner = StepRunner(self.env, registry, self.metrics)
        self.workflow_timeout_s = workflow_timeout_s

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(
        self,
        workflow_id: str,
        inputs: dict[str, Any] | None = None,
        token: CancellationToken | None = None,
        hook_id: str | None = None,
        evidence: dict[str, Any] | None = None,
        write_receipt: bool = True,
    ) -> WorkflowRun:
        """
        Execute a workflow.

        Raises:
            WorkflowNotFoundError: No workflow with that id
            ValidationError: The workflow is malformed or cyclic
        """
        workflow = self.parser.parse(self.store, workflow_id)
        plan = self.planner.plan(workflow.steps)
        token = token or CancellationToken()
        execution_id = uuid.uuid4().hex
        context = ExecutionContext(clock=self.clock).init(workflow.id, inputs)
        log = WorkflowLogger(execution_id=execution_id, workflow_id=workflow.id)
        run = WorkflowRun(workflow_id=workflow.id, execution_id=execution_id, status="running", context=context)

        handle: LockHandle | None = None
        try:
            if workflow.lock and self.durable is not None:
                handle = await self._acquire(workflow, log, token)
            run.started_at = self.clock.isoformat()
            started = self.clock.monotonic()
            log.workflow_started(len(plan), len({p.wave for p in plan}))
            try:
                await asyncio.wait_for(self._run_plan(plan, run, token, log), timeout=self.workflow_timeout_s)
            except asyncio.TimeoutError:
                run.status = "timeout"
                run.error = {"kind": "Timeout", "message": f"Workflow exceeded {self.workflow_timeout_s}s"}
            except CancelledError as exc:
                run.status = "cancelled"
                run.error = exc.to_dict()
            except Exception as exc:
                logger.error(f"[executor] {workflow.id} aborted by {type(exc).__name__}: {exc}", exc_info=True)
                run.status = "failed"
                run.error = {"kind": type(exc).__name__, "message": str(exc)}
            run.duration_ms = self.clock.elapsed_ms(started)
        except LockError as exc:
            run.started_at = run.started_at or self.clock.isoformat()
            run.status = "failed"
            run.error = exc.to_dict()
        except CancelledError as exc:
            # Cancelled while waiting for the workflow lock
            run.started_at = run.started_at or self.clock.isoformat()
            run.status = "cancelled"
            run.error = exc.to_dict()
        finally:
            # Stamp the end before releasing so lock holders never overlap in time
            run.ended_at = self.clock.isoformat()
            if handle is not None:
                await handle.release()

        if write_receipt and self.durable is not None:
            self._persist(run, workflow, hook_id, evidence)

        self.metrics.record_execution(run.status, run.duration_ms)
        log.workflow_completed(run.status, run.duration_ms, run.error["message"] if run.error else None)
        return run

    async def _acquire(self, workflow: Workflow, log: WorkflowLogger, token: CancellationToken) -> LockHandle:
        waited = self.clock.monotonic()
        handle = await self.durable.locks.acquire(workflow.lock, token=token)
        log.lock_acquired(workflow.lock, self.clock.elapsed_ms(waited))
        return handle

    async def _run_plan(
        self,
        plan: list[PlannedStep],
        run: WorkflowRun,
        token: CancellationToken,
        log: WorkflowLogger,
    ) -> None:
        context = run.context
        for wave in self.planner.group_waves(plan):
            token.check()
            outcomes = await asyncio.gather(
                *(self.runner.run(p.step, context, token, log, p.wave) for p in wave),
                return_exceptions=True,
            )
            failure = None
            for planned, outcome in zip(wave, outcomes):
                if isinstance(outcome, BaseException):
                    # Cancellation or an engine fault; re-raised after the wave is recorded
                    failure = failure or outcome
                    continue
                if outcome.success:
                    self.runner.apply_outputs(planned.step, outcome, context)
                context.record(outcome)
                run.step_results.append(outcome)
                if not outcome.success and not planned.step.error_policy.continue_on_error and run.error is None:
                    run.error = outcome.error
            if failure is not None:
                raise failure
            if run.error is not None:
                run.status = "failed"
                return
        run.status = "success"

    # -------------------------------------------------------------------------
    # Receipts
    # -------------------------------------------------------------------------

    def receipt_draft(
        self,
        run: WorkflowRun,
        hook_id: str | None = None,
        evidence: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "hook_id": hook_id,
            "workflow_id": run.workflow_id,
            "execution_id": run.execution_id,
            "epoch": self.store.epoch,
            "started_at": run.started_at,
            "ended_at": run.ended_at,
            "status": run.status,
            "success": run.success,
            "step_results": [r.to_dict() for r in run.step_results],
            "error": run.error,
            "evidence": dict(evidence or {}),
        }

    def _persist(
        self,
        run: WorkflowRun,
        workflow: Workflow,
        hook_id: str | None,
        evidence: dict[str, Any] | None,
    ) -> None:
        receipts = self.durable.receipts
        try:
            receipts.write_execution(run.execution_id, run.context.export(include_history=True))
            run.receipt = receipts.append(self.receipt_draft(run, hook_id, evidence))
            receipts.write_metrics(
                {
                    "executionId": run.execution_id,
                    "workflowId": workflow.id,
                    "status": run.status,
                    "durationMs": run.duration_ms,
                    "steps": len(run.step_results),
                    "failedSteps": sum(1 for r in run.step_results if not r.success),
                    "timestamp": run.ended_at,
                }
            )
        except DurableIoError as exc:
            logger.error(f"[executor] {workflow.id}: {exc}")
            run.status = "failed"
            run.error = exc.to_dict()

    # -------------------------------------------------------------------------
    # Hook and queue entry points
    # -------------------------------------------------------------------------

    async def fire_hook(self, hook: Hook, evaluation: Evaluation) -> Receipt | dict[str, Any] | None:
        """HookEngine action: run the hook's pipelines as a workflow."""
        run = await self.execute(hook.id, hook_id=hook.id, evidence=evaluation.evidence)
        return run.receipt if run.receipt is not None else self.receipt_draft(run, hook.id, evaluation.evidence)

    async def run_job(self, job: JobRecord) -> dict[str, Any]:
        """
        WorkerPool handler.

        The job payload is ``{"workflowId": ..., "inputs": {...}, "hookId": ...}``.
        The receipt is returned as a draft so the pool chains it before acking.
        """
        payload = job.job
        try:
            run = await self.execute(
                payload["workflowId"],
                inputs=payload.get("inputs"),
                hook_id=payload.get("hookId"),
                write_receipt=False,
            )
        except KgflowError as exc:
            error = exc.to_dict()
            return {
                "success": False,
                "error": error,
                "receipt": {
                    "hook_id": payload.get("hookId"),
                    "workflow_id": payload.get("workflowId"),
                    "status": "failed",
                    "success": False,
                    "error": error,
                },
            }
        if self.durable is not None:
            self.durable.receipts.write_execution(run.execution_id, run.context.export(include_history=True))
        return {
            "success": run.success,
            "status": run.status,
            "executionId": run.execution_id,
            "error": run.error,
            "receipt": self.receipt_draft(run, payload.get("hookId")),
        }

    def __repr__(self) -> str:
        return f"WorkflowExecutor(store={self.store!r}, durable={self.durable!r})"


__all__ = ["STATUS_EXIT_CODES", "WorkflowExecutor", "WorkflowRun"]
