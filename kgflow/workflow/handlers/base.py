"""
Step Handler Base Classes.

Each step type has one handler. A handler receives the parsed step, the
resolved inputs and a ``HandlerEnv`` carrying everything it may touch
(store, renderer, filesystem, HTTP client, process launcher, clock), and
returns a plain dict that becomes the step's result data.

Handlers never write to the context and never swallow failures: they raise
``StepError`` (with the kind matching their type) and the runtime records
it.

Usage:
    class EchoHandler(StepHandler):
        type = StepType.TEMPLATE

        async def handle(self, step, inputs, env):
            return {"content": env.renderer.render(step.config["template"], inputs)}
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kgflow.clock import Clock
from kgflow.errors import StepError, StepErrorKind
from kgflow.store.quadstore import QuadStore
from kgflow.store.turtle import UriResolver

from ..filesystem import FileSystem, LocalFileSystem
from ..models import Step, StepType
from ..templating import TemplateRenderer

if TYPE_CHECKING:
    import httpx

    from .cli import ProcessLauncher


@dataclass
class HandlerEnv:
    """
    Resources available to step handlers during one execution.

    ``http`` may be left unset; the HTTP handler then opens a client per
    request. Tests pass an ``httpx.AsyncClient`` over a MockTransport and a
    MemoryFileSystem.
    """

    store: QuadStore
    renderer: TemplateRenderer = field(default_factory=TemplateRenderer)
    fs: FileSystem = field(default_factory=LocalFileSystem)
    http: httpx.AsyncClient | None = None
    launcher: ProcessLauncher | None = None
    resolver: UriResolver = field(default_factory=UriResolver)
    clock: Clock = field(default_factory=Clock)
    default_timeout_s: float = 30.0

    def timeout_for(self, step: Step) -> float:
        return step.timeout_s if step.timeout_s is not None else self.default_timeout_s


class StepHandler(ABC):
    """Base class for the handler of one step type."""

    type: StepType
    error_kind: StepErrorKind

    @abstractmethod
    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        """
        Run the step.

        Raises:
            StepError: On any handler-level failure
        """
        ...

    def fail(self, step: Step, message: str, data: dict[str, Any] | None = None) -> StepError:
        return StepError(self.error_kind, message, step_id=step.id, data=data)

    def load_template(self, step: Step, env: HandlerEnv) -> tuple[str, str]:
        """
        Template text and a label for where it came from.

        Inline ``template`` wins over ``templatePath``; paths are read through
        the environment's filesystem.
        """
        inline = step.config.get("template")
        if inline:
            return str(inline), "inline"
        path = str(step.config.get("templatePath", ""))
        try:
            return env.fs.read_text(path), path
        except OSError as exc:
            raise self.fail(step, f"Cannot read template {path}: {exc}") from exc

    def __repr__(self) -> str:
        return f"<{type(self).__name__} type={self.type.value}>"


__all__ = ["HandlerEnv", "StepHandler"]
