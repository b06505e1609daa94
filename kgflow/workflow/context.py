"""
Execution context.

Per-execution key/value state threaded through the steps of one workflow
run. Keys keep insertion order. The context is exclusive to its run; steps
in the same wave write to it one at a time, after they finish.

See ``ExecutionContext.export`` for the record written next to receipts.
"""

from __future__ import annotations

import copy
import logging
import re
from collections import Counter
from typing import Any

from kgflow.clock import Clock

from .models import StepResult

logger = logging.getLogger(__name__)

_MISSING = object()


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


class ExecutionContext:
    def __init__(
        self,
        workflow_id: str = "",
        inputs: dict[str, Any] | None = None,
        start_time: str | None = None,
        clock: Clock | None = None,
    ):
        self.clock = clock or Clock()
        self.initialized = False
        self.workflow_id = ""
        self.start_time = ""
        self._inputs: dict[str, Any] = {}
        self._values: dict[str, Any] = {}
        self._history: list[dict[str, Any]] = []
        if workflow_id or inputs:
            self.init(workflow_id, inputs, start_time)

    def init(
        self,
        workflow_id: str,
        inputs: dict[str, Any] | None = None,
        start_time: str | None = None,
    ) -> ExecutionContext:
        self.workflow_id = workflow_id
        self.start_time = start_time or self.clock.isoformat()
        self._inputs = copy.deepcopy(dict(inputs or {}))
        self._values = copy.deepcopy(self._inputs)
        self._history = []
        self.initialized = True
        logger.debug(f"[context] {workflow_id} initialized with {len(self._values)} values")
        return self

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def set_output(self, key: str, value: Any) -> None:
        self.set(key, value)

    def get_output(self, key: str, default: Any = None) -> Any:
        return self.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._values

    def remove(self, key: str) -> bool:
        return self._values.pop(key, _MISSING) is not _MISSING

    def keys(self) -> list[str]:
        return list(self._values)

    def keys_matching(self, pattern: str | re.Pattern[str]) -> list[str]:
        """Keys containing ``pattern`` (a substring) or matching it (a regex)."""
        if isinstance(pattern, re.Pattern):
            return [k for k in self._values if pattern.search(k)]
        return [k for k in self._values if pattern in k]

    def outputs(self) -> dict[str, Any]:
        return dict(self._values)

    @property
    def inputs(self) -> dict[str, Any]:
        return dict(self._inputs)

    def merge(self, data: dict[str, Any], overwrite: bool = False) -> int:
        """Add ``data``; existing keys are kept unless ``overwrite``. Returns keys written."""
        written = 0
        for key, value in data.items():
            if overwrite or key not in self._values:
                self._values[key] = value
                written += 1
        return written

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def record(self, result: StepResult) -> None:
        entry = result.to_dict()
        entry["contextSize"] = len(self._values)
        self._history.append(entry)

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    @property
    def last_execution(self) -> dict[str, Any] | None:
        return self._history[-1] if self._history else None

    def execution_stats(self) -> dict[str, Any]:
        succeeded = sum(1 for h in self._history if h["success"])
        stats: dict[str, Any] = {
            "workflowId": self.workflow_id,
            "startTime": self.start_time,
            "contextSize": len(self._values),
            "stepCount": len(self._history),
            "successfulSteps": succeeded,
            "failedSteps": len(self._history) - succeeded,
        }
        if self._history:
            total = sum(h["durationMs"] for h in self._history)
            stats["averageStepDurationMs"] = round(total / len(self._history), 3)
        return stats

    # -------------------------------------------------------------------------
    # Snapshots and export
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            "timestamp": self.clock.isoformat(),
            "workflowId": self.workflow_id,
            "startTime": self.start_time,
            "inputs": copy.deepcopy(self._inputs),
            "context": copy.deepcopy(self._values),
            "history": copy.deepcopy(self._history),
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.workflow_id = snapshot.get("workflowId", self.workflow_id)
        self.start_time = snapshot.get("startTime", self.start_time)
        if "inputs" in snapshot:
            self._inputs = copy.deepcopy(snapshot["inputs"])
        if "context" in snapshot:
            self._values = copy.deepcopy(snapshot["context"])
        if "history" in snapshot:
            self._history = copy.deepcopy(snapshot["history"])
        self.initialized = True
        logger.debug(f"[context] restored {len(self._values)} values")

    def export(self, include_history: bool = False, include_metadata: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "workflowId": self.workflow_id,
            "startTime": self.start_time,
            "context": copy.deepcopy(self._values),
        }
        if include_history:
            data["history"] = copy.deepcopy(self._history)
        if include_metadata:
            data["metadata"] = {
                "contextSize": len(self._values),
                "initialized": self.initialized,
                "exportTime": self.clock.isoformat(),
            }
        return data

    def import_state(self, data: dict[str, Any]) -> None:
        """Load a previous ``export()``."""
        self.workflow_id = data.get("workflowId", self.workflow_id)
        self.start_time = data.get("startTime", self.start_time)
        if "context" in data:
            self._values = copy.deepcopy(data["context"])
        if "history" in data:
            self._history = copy.deepcopy(data["history"])
        self.initialized = True

    def summary(self) -> dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "initialized": self.initialized,
            "contextSize": len(self._values),
            "stepCount": len(self._history),
            "valueTypes": dict(Counter(_type_name(v) for v in self._values.values())),
        }

    def __repr__(self) -> str:
        return f"ExecutionContext(workflow_id={self.workflow_id!r}, keys={len(self._values)})"


__all__ = ["ExecutionContext"]
