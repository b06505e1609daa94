"""
Runtime types for parsed workflows and their execution.

A workflow is a hook viewed as a unit of work: its ordered pipelines are
flattened into one step list, in declaration order. Steps reference each
other by id (the local name of the step IRI), never by object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kgflow.vocabulary import WF, local_name

from .retry import RetryPolicy


class StepType(str, Enum):
    SPARQL = "sparql"
    TEMPLATE = "template"
    FILE = "file"
    HTTP = "http"
    CLI = "cli"
    OUTPUT = "output"


STEP_TYPE_IRIS = {
    WF.SparqlStep: StepType.SPARQL,
    WF.TemplateStep: StepType.TEMPLATE,
    WF.FileStep: StepType.FILE,
    WF.HttpStep: StepType.HTTP,
    WF.CliStep: StepType.CLI,
    WF.OutputStep: StepType.OUTPUT,
}


@dataclass
class ErrorPolicy:
    """Error-handling wrapper declared on a step."""

    retry_count: int = 0
    retry_delay_ms: int = 0
    backoff: str = "constant"
    continue_on_error: bool = False

    @property
    def wraps(self) -> bool:
        return self.retry_count > 0 or self.continue_on_error

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_step(self.retry_count, self.retry_delay_ms, self.backoff)

    def to_dict(self) -> dict[str, Any]:
        return {
            "retryCount": self.retry_count,
            "retryDelay": self.retry_delay_ms,
            "retryBackoff": self.backoff,
            "continueOnError": self.continue_on_error,
        }


@dataclass
class Step:
    id: str
    type: StepType
    iri: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    input_mapping: dict[str, str] = field(default_factory=dict)
    output_mapping: dict[str, str] = field(default_factory=dict)
    error_policy: ErrorPolicy = field(default_factory=ErrorPolicy)
    timeout_s: float | None = None
    pipeline: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "iri": self.iri,
            "config": dict(self.config),
            "dependsOn": list(self.depends_on),
            "inputMapping": dict(self.input_mapping),
            "outputMapping": dict(self.output_mapping),
            "errorPolicy": self.error_policy.to_dict(),
            "timeout": self.timeout_s,
        }


@dataclass
class Pipeline:
    id: str
    iri: str
    step_ids: list[str] = field(default_factory=list)


@dataclass
class Workflow:
    id: str
    iri: str
    title: str = ""
    pipelines: list[Pipeline] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)
    lock: str | None = None
    warnings: list[str] = field(default_factory=list)

    def step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "iri": self.iri,
            "title": self.title,
            "pipelines": [{"id": p.id, "steps": list(p.step_ids)} for p in self.pipelines],
            "steps": [s.to_dict() for s in self.steps],
            "lock": self.lock,
        }


@dataclass
class WorkflowSummary:
    id: str
    iri: str
    title: str
    pipeline_count: int
    step_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "iri": self.iri,
            "title": self.title,
            "pipelineCount": self.pipeline_count,
            "stepCount": self.step_count,
        }


@dataclass
class ValidationReport:
    workflow_id: str
    valid: bool
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error_kinds(self) -> list[str]:
        return [e["kind"] for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class StepResult:
    """Standardized outcome of one step."""

    step_id: str
    success: bool
    duration_ms: float
    timestamp: str
    data: Any = None
    error: dict[str, Any] | None = None
    attempts: int = 1
    step_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stepId": self.step_id,
            "success": self.success,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            data["data"] = self.data
        if self.error is not None:
            data["error"] = self.error
        if self.attempts != 1:
            data["attempts"] = self.attempts
        return data


@dataclass
class PlannedStep:
    step: Step
    index: int
    wave: int
    estimated_cost: float
    complexity: str
    blocking: bool
    priority: float
    dependents: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.step.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.step.id,
            "type": self.step.type.value,
            "index": self.index,
            "wave": self.wave,
            "estimatedCost": self.estimated_cost,
            "complexity": self.complexity,
            "blocking": self.blocking,
            "priority": self.priority,
            "dependents": list(self.dependents),
        }


__all__ = [
    "STEP_TYPE_IRIS",
    "ErrorPolicy",
    "Pipeline",
    "PlannedStep",
    "Step",
    "StepResult",
    "StepType",
    "ValidationReport",
    "Workflow",
    "WorkflowSummary",
    "local_name",
]
