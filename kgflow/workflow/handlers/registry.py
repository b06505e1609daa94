"""
Handler Registry.

Maps each step type to the handler that runs it. Handlers are registered
once when the executor is built and are not swapped during a run.

Usage:
    registry = HandlerRegistry()
    registry.register(SparqlHandler())
    handler = registry.get_required(StepType.SPARQL)

    # All six built-in handlers
    registry = create_default_registry()
"""

from __future__ import annotations

import logging

from ..models import StepType
from .base import StepHandler

logger = logging.getLogger(__name__)


class HandlerRegistryError(Exception):
    """Error in handler registry operations."""

    pass


class HandlerRegistry:
    """
    Registry of step handlers keyed by step type.

    Example:
        registry = HandlerRegistry()
        registry.register(HttpHandler())
        handler = registry.get(StepType.HTTP)
    """

    def __init__(self) -> None:
        self._handlers: dict[StepType, StepHandler] = {}

    def register(self, handler: StepHandler) -> None:
        """
        Register a handler for its step type.

        Raises:
            HandlerRegistryError: If the type already has a handler or the
                handler declares no valid type
        """
        step_type = getattr(handler, "type", None)
        if not isinstance(step_type, StepType):
            raise HandlerRegistryError(f"Handler must declare a StepType: {handler!r}")
        if step_type in self._handlers:
            raise HandlerRegistryError(
                f"Handler for '{step_type.value}' already registered. Unregister it first."
            )
        self._handlers[step_type] = handler
        logger.debug(f"[handler_registry] Registered handler: {step_type.value}")

    def unregister(self, step_type: StepType | str) -> bool:
        """
        Remove the handler for a type.

        Returns:
            True if a handler was removed, False if none was registered
        """
        try:
            key = StepType(step_type)
        except ValueError:
            return False
        if key in self._handlers:
            del self._handlers[key]
            logger.debug(f"[handler_registry] Unregistered handler: {key.value}")
            return True
        return False

    def get(self, step_type: StepType | str) -> StepHandler | None:
        try:
            return self._handlers.get(StepType(step_type))
        except ValueError:
            return None

    def get_required(self, step_type: StepType | str) -> StepHandler:
        """
        Get the handler for a type, raising if there is none.

        Raises:
            HandlerRegistryError: If no handler is registered for the type
        """
        handler = self.get(step_type)
        if handler is None:
            available = [t.value for t in self._handlers]
            raise HandlerRegistryError(f"No handler for step type '{step_type}'. Available: {available}")
        return handler

    def types(self) -> list[str]:
        return [t.value for t in self._handlers]

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, step_type: object) -> bool:
        try:
            return StepType(step_type) in self._handlers
        except ValueError:
            return False

    def __repr__(self) -> str:
        return f"<HandlerRegistry types={self.types()}>"


# =============================================================================
# Factory Functions
# =============================================================================


def create_default_registry() -> HandlerRegistry:
    """Registry with the six built-in handlers."""
    from .cli import CliHandler
    from .file import FileHandler
    from .http import HttpHandler
    from .output import OutputHandler
    from .sparql import SparqlHandler
    from .template import TemplateHandler

    registry = HandlerRegistry()
    for handler in (
        SparqlHandler(),
        TemplateHandler(),
        FileHandler(),
        HttpHandler(),
        CliHandler(),
        OutputHandler(),
    ):
        registry.register(handler)
    return registry


__all__ = ["HandlerRegistry", "HandlerRegistryError", "create_default_registry"]
