"""
Error taxonomy for kgflow.

Every failure the engine reports is one of the classes below. Errors raised
inside a step handler are captured into the step's result; parse and
validation errors abort before anything executes; durable I/O errors on the
receipt path fail the workflow.

Hierarchy:
    KgflowError
    ├── ParseError
    ├── ValidationError
    │   ├── ConfigError
    │   ├── CycleError
    │   ├── DuplicateStepError
    │   ├── UnknownStepTypeError
    │   └── UnknownDependencyError
    ├── QueryError
    ├── StepError
    ├── LockError
    ├── DurableIoError
    ├── WorkflowNotFoundError
    └── CancelledError
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any


class ExitCode(IntEnum):
    """Process exit codes when the engine is driven from a shell."""

    OK = 0
    FAILED = 1
    NOT_FOUND = 2
    VALIDATION = 3
    CANCELLED = 4
    TIMEOUT = 5


class KgflowError(Exception):
    """Base class for all engine errors."""

    kind: str = "Error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class ParseError(KgflowError):
    """Malformed Turtle or an invalid workflow shape."""

    kind = "ParseError"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class WorkflowNotFoundError(KgflowError):
    """No hook with the requested id exists in the store."""

    kind = "NotFound"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' not found")


# =============================================================================
# Validation
# =============================================================================


class ValidationError(KgflowError):
    """
    Workflow failed structural validation.

    A ValidationError may aggregate several problems; ``errors`` holds the
    individual ones (each itself a ValidationError subclass).
    """

    kind = "ValidationError"

    def __init__(
        self,
        message: str,
        step_ids: list[str] | None = None,
        errors: list[ValidationError] | None = None,
    ):
        self.step_ids = list(step_ids or [])
        self.errors = list(errors or [])
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "stepIds": self.step_ids}


class ConfigError(ValidationError):
    """A step is missing configuration its type requires."""

    kind = "ConfigError"

    def __init__(self, step_id: str, missing: list[str]):
        self.step_id = step_id
        self.missing = list(missing)
        super().__init__(
            f"Step '{step_id}' is missing required config: {', '.join(missing)}",
            step_ids=[step_id],
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["missing"] = self.missing
        return data


class CycleError(ValidationError):
    """The step dependency graph contains a cycle."""

    kind = "CycleError"

    def __init__(self, remaining: list[str]):
        self.remaining = list(remaining)
        super().__init__(
            f"Dependency cycle detected among steps: {', '.join(remaining)}",
            step_ids=remaining,
        )


class DuplicateStepError(ValidationError):
    kind = "DuplicateStepError"

    def __init__(self, step_id: str):
        super().__init__(f"Duplicate step id '{step_id}'", step_ids=[step_id])


class UnknownStepTypeError(ValidationError):
    kind = "UnknownStepTypeError"

    def __init__(self, step_id: str, type_iri: str | None):
        self.type_iri = type_iri
        detail = f"'{type_iri}'" if type_iri else "none declared"
        super().__init__(f"Step '{step_id}' has unknown type ({detail})", step_ids=[step_id])


class UnknownDependencyError(ValidationError):
    kind = "UnknownDependencyError"

    def __init__(self, step_id: str, dependency: str):
        self.dependency = dependency
        super().__init__(
            f"Step '{step_id}' depends on '{dependency}', which is not part of the workflow",
            step_ids=[step_id],
        )


# =============================================================================
# Query
# =============================================================================


class QueryErrorKind(str, Enum):
    SYNTAX = "Syntax"
    UNBOUND_VARIABLE = "UnboundVariable"
    TYPE_MISMATCH = "TypeMismatch"
    UNSUPPORTED = "Unsupported"


class QueryError(KgflowError):
    """SPARQL parse or evaluation failure."""

    kind = "QueryError"

    def __init__(self, kind: QueryErrorKind, message: str, position: int | None = None):
        self.query_kind = kind
        self.position = position
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(f"{kind.value}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "queryKind": self.query_kind.value, "message": self.message}


# =============================================================================
# Execution
# =============================================================================


class StepErrorKind(str, Enum):
    TEMPLATE = "Template"
    FILE = "File"
    HTTP = "Http"
    CLI = "Cli"
    OUTPUT = "Output"
    QUERY = "Query"
    TIMEOUT = "Timeout"


class StepError(KgflowError):
    """
    A step handler failed.

    ``data`` carries whatever partial output the handler produced before
    failing (e.g. captured stdout of a CLI command with a non-zero exit).
    """

    kind = "StepError"

    def __init__(
        self,
        kind: StepErrorKind,
        message: str,
        step_id: str | None = None,
        data: dict[str, Any] | None = None,
    ):
        self.step_kind = kind
        self.step_id = step_id
        self.data = data
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "stepKind": self.step_kind.value,
            "stepId": self.step_id,
            "message": self.message,
        }


class LockError(KgflowError):
    """A named lock could not be acquired within its deadline."""

    kind = "LockError"

    def __init__(self, name: str, message: str | None = None):
        self.name = name
        super().__init__(message or f"Could not acquire lock '{name}'")


class DurableIoError(KgflowError):
    """Receipt, queue, or snapshot write failed."""

    kind = "DurableIoError"


class CancelledError(KgflowError):
    """Cooperative cancellation was requested."""

    kind = "CancelledError"

    def __init__(self, message: str = "Execution cancelled"):
        super().__init__(message)


__all__ = [
    "CancelledError",
    "ConfigError",
    "CycleError",
    "DuplicateStepError",
    "DurableIoError",
    "ExitCode",
    "KgflowError",
    "LockError",
    "ParseError",
    "QueryError",
    "QueryErrorKind",
    "StepError",
    "StepErrorKind",
    "UnknownDependencyError",
    "UnknownStepTypeError",
    "ValidationError",
    "WorkflowNotFoundError",
]
