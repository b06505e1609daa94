"""
Observability for kgflow.

Structured logging and in-process metrics for workflow execution, hook
evaluation and the durable I/O layer.

Design Philosophy:
- Plain ``logging`` underneath; structured events are JSON strings
- One metrics object per process, replaceable in tests
- Minimal overhead when nothing reads the metrics
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install the standard log format on the root logger."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


# =============================================================================
# Log Levels
# =============================================================================


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# Structured Logger Protocol
# =============================================================================


class StructuredLogger(Protocol):
    """Loggers that take key-value context instead of formatted strings."""

    def debug(self, message: str, **context: Any) -> None: ...

    def info(self, message: str, **context: Any) -> None: ...

    def warning(self, message: str, **context: Any) -> None: ...

    def error(self, message: str, **context: Any) -> None: ...


# =============================================================================
# JSON Logger Implementation
# =============================================================================


@dataclass
class JSONLogger:
    """
    Structured logger that outputs JSON-formatted logs.

    Example output:
        {"timestamp": "2024-01-01T00:00:00+00:00", "level": "info",
         "message": "Workflow started", "execution_id": "abc-123",
         "workflow": "ex:release", "steps": 3}
    """

    name: str = "kgflow"
    execution_id: str | None = None
    extra_context: dict[str, Any] = field(default_factory=dict)
    _python_logger: logging.Logger | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._python_logger = logging.getLogger(self.name)

    def _log(self, level: LogLevel, message: str, context: dict[str, Any]) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "message": message,
            **self.extra_context,
            **context,
        }
        if self.execution_id:
            record["execution_id"] = self.execution_id

        json_str = json.dumps(record, default=str)
        log_method = getattr(self._python_logger, level.value)
        log_method(json_str)

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(LogLevel.ERROR, message, context)

    def with_context(self, **extra: Any) -> JSONLogger:
        """Create a new logger with additional context."""
        return JSONLogger(
            name=self.name,
            execution_id=self.execution_id,
            extra_context={**self.extra_context, **extra},
        )


# =============================================================================
# Workflow Logger
# =============================================================================


@dataclass
class WorkflowLogger:
    """
    Event logger for one workflow execution.

    Example:
        log = WorkflowLogger(execution_id="abc-123", workflow_id="release")
        log.workflow_started(step_count=3, waves=2)
        log.step_completed(step_id="query", step_type="sparql", duration_ms=12.5)
        log.workflow_completed(status="success", duration_ms=40.0)
    """

    execution_id: str
    workflow_id: str = ""
    inner: StructuredLogger = field(default_factory=JSONLogger)

    def __post_init__(self) -> None:
        if isinstance(self.inner, JSONLogger):
            self.inner = JSONLogger(
                name="kgflow.workflow",
                execution_id=self.execution_id,
                extra_context={"workflow": self.workflow_id} if self.workflow_id else {},
            )

    # Workflow lifecycle
    def workflow_started(self, step_count: int, waves: int) -> None:
        self.inner.info("Workflow started", steps=step_count, waves=waves)

    def workflow_completed(self, status: str, duration_ms: float, error: str | None = None) -> None:
        if status == "success":
            self.inner.info("Workflow completed", status=status, duration_ms=round(duration_ms, 2))
        else:
            self.inner.error(
                "Workflow did not complete",
                status=status,
                duration_ms=round(duration_ms, 2),
                error=error,
            )

    # Step lifecycle
    def step_started(self, step_id: str, step_type: str, wave: int) -> None:
        self.inner.debug("Step started", step=step_id, step_type=step_type, wave=wave)

    def step_completed(self, step_id: str, step_type: str, duration_ms: float) -> None:
        self.inner.debug(
            "Step completed",
            step=step_id,
            step_type=step_type,
            duration_ms=round(duration_ms, 2),
        )

    def step_failed(self, step_id: str, error: str, error_kind: str) -> None:
        self.inner.error("Step failed", step=step_id, error=error, error_kind=error_kind)

    # Retry
    def retry_attempt(self, step_id: str, attempt: int, max_attempts: int, error: str, delay_ms: float) -> None:
        self.inner.warning(
            "Retry attempt",
            step=step_id,
            attempt=attempt,
            max_attempts=max_attempts,
            error=error,
            delay_ms=round(delay_ms, 2),
        )

    # Locks
    def lock_acquired(self, name: str, waited_ms: float) -> None:
        self.inner.info("Lock acquired", lock=name, waited_ms=round(waited_ms, 2))


# =============================================================================
# Metrics
# =============================================================================


@dataclass
class EngineMetrics:
    """
    Engine-wide execution metrics.

    Tracks workflow outcomes, step durations per type, retries, hook
    evaluations and firings.
    """

    # Counters
    executions_total: int = 0
    executions_by_status: dict[str, int] = field(default_factory=dict)
    steps_total: int = 0
    steps_failed: int = 0
    retries_total: int = 0
    hook_evaluations: int = 0
    hook_firings: int = 0

    # Histograms (simplified as lists)
    execution_durations_ms: list[float] = field(default_factory=list)
    step_durations_ms: dict[str, list[float]] = field(default_factory=dict)

    max_histogram_entries: int = 1000

    def record_execution(self, status: str, duration_ms: float) -> None:
        self.executions_total += 1
        self.executions_by_status[status] = self.executions_by_status.get(status, 0) + 1
        self.execution_durations_ms.append(duration_ms)
        self._trim_histogram(self.execution_durations_ms)

    def record_step(self, step_type: str, duration_ms: float, success: bool) -> None:
        self.steps_total += 1
        if not success:
            self.steps_failed += 1
        histogram = self.step_durations_ms.setdefault(step_type, [])
        histogram.append(duration_ms)
        self._trim_histogram(histogram)

    def record_retry(self) -> None:
        self.retries_total += 1

    def record_hook(self, fired: bool) -> None:
        self.hook_evaluations += 1
        if fired:
            self.hook_firings += 1

    def _trim_histogram(self, histogram: list[float]) -> None:
        if len(histogram) > self.max_histogram_entries:
            del histogram[: len(histogram) - self.max_histogram_entries]

    def get_stats(self) -> dict[str, Any]:
        """Get summary statistics."""

        def percentile(data: list[float], p: float) -> float | None:
            if not data:
                return None
            sorted_data = sorted(data)
            k = (len(sorted_data) - 1) * p
            f = int(k)
            c = f + 1 if f + 1 < len(sorted_data) else f
            return sorted_data[f] + (k - f) * (sorted_data[c] - sorted_data[f])

        succeeded = self.executions_by_status.get("success", 0)
        return {
            "executions": {
                "total": self.executions_total,
                "by_status": dict(self.executions_by_status),
                "success_rate": (succeeded / self.executions_total if self.executions_total > 0 else None),
            },
            "duration_ms": {
                "p50": percentile(self.execution_durations_ms, 0.5),
                "p95": percentile(self.execution_durations_ms, 0.95),
            },
            "steps": {
                "total": self.steps_total,
                "failed": self.steps_failed,
                "p50_by_type": {t: percentile(d, 0.5) for t, d in self.step_durations_ms.items()},
            },
            "retries_total": self.retries_total,
            "hooks": {"evaluations": self.hook_evaluations, "firings": self.hook_firings},
        }

    def reset(self) -> None:
        self.executions_total = 0
        self.executions_by_status.clear()
        self.steps_total = 0
        self.steps_failed = 0
        self.retries_total = 0
        self.hook_evaluations = 0
        self.hook_firings = 0
        self.execution_durations_ms.clear()
        self.step_durations_ms.clear()


_global_metrics = EngineMetrics()


def get_metrics() -> EngineMetrics:
    """Get the global metrics instance."""
    return _global_metrics


def reset_metrics() -> None:
    """Reset global metrics (useful for testing)."""
    _global_metrics.reset()


__all__ = [
    "LOG_FORMAT",
    "EngineMetrics",
    "JSONLogger",
    "LogLevel",
    "StructuredLogger",
    "WorkflowLogger",
    "configure_logging",
    "get_metrics",
    "reset_metrics",
]
