"""
kgflow Workflow

Parsing, planning and execution of workflows defined in the graph.
"""

from .cancellation import CancellationToken
from .context import ExecutionContext
from .executor import WorkflowExecutor, WorkflowRun
from .filesystem import FileSystem, LocalFileSystem, MemoryFileSystem
from .handlers import HandlerEnv, HandlerRegistry, HandlerRegistryError, StepHandler, create_default_registry
from .models import (
    ErrorPolicy,
    Pipeline,
    PlannedStep,
    Step,
    StepResult,
    StepType,
    ValidationReport,
    Workflow,
    WorkflowSummary,
)
from .parser import WorkflowParser
from .planner import DAGPlanner
from .retry import ConstantBackoff, ExponentialBackoff, RetryPolicy, with_retry
from .runtime import StepRunner
from .templating import TemplateRenderer

__all__ = [
    "CancellationToken",
    "ConstantBackoff",
    "DAGPlanner",
    "ErrorPolicy",
    "ExecutionContext",
    "ExponentialBackoff",
    "FileSystem",
    "HandlerEnv",
    "HandlerRegistry",
    "HandlerRegistryError",
    "LocalFileSystem",
    "MemoryFileSystem",
    "Pipeline",
    "PlannedStep",
    "RetryPolicy",
    "Step",
    "StepHandler",
    "StepResult",
    "StepRunner",
    "StepType",
    "TemplateRenderer",
    "ValidationReport",
    "Workflow",
    "WorkflowExecutor",
    "WorkflowParser",
    "WorkflowRun",
    "WorkflowSummary",
    "create_default_registry",
    "with_retry",
]
