"""
Step Runtime.

Runs one step: resolve its inputs from the context, dispatch to the handler
for its type under the step timeout (and the step's retry policy, when it
declares one), and standardize the outcome as a ``StepResult``.

Applying the result to the context is a separate call (``apply_outputs``)
so the executor can write the results of a parallel wave in plan order.

Mapping conventions:
    inputMapping   {"localName": "contextKey"}   overlaid on the context values
    outputMapping  {"contextKey": "dotted.path"} into the handler's result;
                   without a mapping the whole result is stored under the step id
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from kgflow.errors import CancelledError, KgflowError, StepError, StepErrorKind
from kgflow.observability import EngineMetrics, WorkflowLogger, get_metrics

from .cancellation import CancellationToken
from .context import ExecutionContext
from .handlers.base import HandlerEnv
from .handlers.registry import HandlerRegistry, create_default_registry
from .models import Step, StepResult
from .retry import with_retry

logger = logging.getLogger(__name__)

_MISSING = object()


def extract_path(data: Any, path: str) -> Any:
    """
    Follow a dotted path through dicts and lists; ``None`` if it leads nowhere.

    ``length`` on a list or string is its size.

    Example:
        extract_path({"results": [{"c": "x"}]}, "results.0.c")  # "x"
        extract_path({"results": [{"c": "x"}]}, "results.length")  # 1
    """
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        elif part == "length" and isinstance(current, (list, tuple, str)):
            current = len(current)
        else:
            current = _MISSING
        if current is _MISSING:
            return None
    return current


def error_info(exc: Exception, step: Step) -> dict[str, Any]:
    if isinstance(exc, StepError):
        if exc.step_id is None:
            exc.step_id = step.id
        return exc.to_dict()
    if isinstance(exc, KgflowError):
        return {**exc.to_dict(), "stepId": step.id}
    return {"kind": type(exc).__name__, "stepId": step.id, "message": str(exc)}


class StepRunner:
    """
    Executes steps through the handler registry.

    Example:
        runner = StepRunner(HandlerEnv(store=store))
        result = await runner.run(step, context)
        if result.success:
            runner.apply_outputs(step, result, context)
    """

    def __init__(
        self,
        env: HandlerEnv,
        registry: HandlerRegistry | None = None,
        metrics: EngineMetrics | None = None,
    ):
        self.env = env
        self.registry = registry if registry is not None else create_default_registry()
        self.metrics = metrics or get_metrics()

    # -------------------------------------------------------------------------
    # Inputs and outputs
    # -------------------------------------------------------------------------

    def resolve_inputs(self, step: Step, context: ExecutionContext) -> dict[str, Any]:
        inputs = context.outputs()
        for local, key in step.input_mapping.items():
            if not context.has(key):
                logger.warning(f"[runtime] {step.id}: input '{local}' maps to missing context key '{key}'")
            inputs[local] = context.get(key)
        return inputs

    def apply_outputs(self, step: Step, result: StepResult, context: ExecutionContext) -> None:
        if not step.output_mapping:
            context.set_output(step.id, result.data)
            return
        for key, path in step.output_mapping.items():
            value = extract_path(result.data, path)
            if value is None:
                logger.warning(f"[runtime] {step.id}: output path '{path}' not found in result")
            context.set_output(key, value)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def attempt(self, step: Step, inputs: dict[str, Any]) -> dict[str, Any]:
        """One handler call under the step timeout."""
        handler = self.registry.get_required(step.type)
        timeout = self.env.timeout_for(step)
        try:
            return await asyncio.wait_for(handler.handle(step, inputs, self.env), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StepError(StepErrorKind.TIMEOUT, f"Step timed out after {timeout}s", step_id=step.id) from exc

    async def run(
        self,
        step: Step,
        context: ExecutionContext,
        token: CancellationToken | None = None,
        log: WorkflowLogger | None = None,
        wave: int = 0,
    ) -> StepResult:
        """
        Run ``step`` and return its result; handler failures are captured.

        Raises:
            CancelledError: If ``token`` was cancelled before the step started
        """
        if token is not None:
            token.check()
        inputs = self.resolve_inputs(step, context)
        timestamp = self.env.clock.isoformat()
        started = self.env.clock.monotonic()
        if log is not None:
            log.step_started(step.id, step.type.value, wave)

        data: Any = None
        error: dict[str, Any] | None = None
        attempts = 1
        policy = step.error_policy.retry_policy()

        if policy.max_attempts > 1:

            def on_retry(attempt: int, exc: Exception, delay: float) -> None:
                self.metrics.record_retry()
                if log is not None:
                    log.retry_attempt(step.id, attempt, policy.max_attempts, str(exc), delay * 1000)

            outcome = await with_retry(
                lambda: self.attempt(step, inputs), policy, step.id, on_retry=on_retry, token=token
            )
            attempts = outcome.attempts
            if outcome.success:
                data = outcome.result
            else:
                failure = outcome.final_error
                if isinstance(failure, CancelledError):
                    raise failure
                error = error_info(failure, step)
                data = getattr(failure, "data", None)
        else:
            try:
                data = await self.attempt(step, inputs)
            except CancelledError:
                raise
            except Exception as exc:
                error = error_info(exc, step)
                data = getattr(exc, "data", None)

        duration = self.env.clock.elapsed_ms(started)
        success = error is None
        self.metrics.record_step(step.type.value, duration, success)
        if log is not None:
            if success:
                log.step_completed(step.id, step.type.value, duration)
            else:
                log.step_failed(step.id, error["message"], error.get("stepKind") or error["kind"])
        if not success:
            logger.warning(f"[runtime] {step.id} failed: {error['message']}")

        return StepResult(
            step_id=step.id,
            success=success,
            duration_ms=duration,
            timestamp=timestamp,
            data=data,
            error=error,
            attempts=attempts,
            step_type=step.type.value,
        )


__all__ = ["StepRunner", "error_info", "extract_path"]
