"""
kgflow Step Handlers

One handler per step type, looked up through the HandlerRegistry.
"""

from .base import HandlerEnv, StepHandler
from .cli import CliHandler, CommandResult, ProcessLauncher
from .file import FileHandler
from .http import HttpHandler
from .output import OutputHandler, format_for_path
from .registry import HandlerRegistry, HandlerRegistryError, create_default_registry
from .sparql import SparqlHandler
from .template import TemplateHandler

__all__ = [
    "CliHandler",
    "CommandResult",
    "FileHandler",
    "HandlerEnv",
    "HandlerRegistry",
    "HandlerRegistryError",
    "HttpHandler",
    "OutputHandler",
    "ProcessLauncher",
    "SparqlHandler",
    "StepHandler",
    "TemplateHandler",
    "create_default_registry",
    "format_for_path",
]
