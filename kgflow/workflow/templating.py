"""
Template rendering for steps.

Rendering is Jinja2 restricted to a fixed filter set:

    date(fmt)   split(sep)  join(sep)  length     sum(attribute)
    max(attr)   min(attr)   round(n)   int        float
    tojson      default(v)  capitalize truncate(n)

plus ``{% for %}`` / ``{% if %}`` control blocks. Any other filter is a
render error. Undefined names render as the empty string unless the
renderer is strict.

Usage:
    renderer = TemplateRenderer()
    renderer.render("Found {{ items | length }} commits", {"items": [1, 2]})
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateError, Undefined
from jinja2.filters import FILTERS

from kgflow.clock import Clock, parse_instant
from kgflow.errors import StepError, StepErrorKind

logger = logging.getLogger(__name__)

PASSTHROUGH_FILTERS = (
    "join",
    "length",
    "sum",
    "max",
    "min",
    "round",
    "int",
    "float",
    "tojson",
    "default",
    "capitalize",
    "truncate",
)

TEMPLATE_MARKERS = ("{{", "{%")


def has_markup(text: str) -> bool:
    return any(marker in text for marker in TEMPLATE_MARKERS)


class TemplateRenderer:
    def __init__(self, strict: bool = False, clock: Clock | None = None):
        self.strict = strict
        self.clock = clock or Clock()
        self.env = Environment(
            undefined=StrictUndefined if strict else Undefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        # Replace Jinja's filter table wholesale so unknown filters fail to compile
        self.env.filters = {name: FILTERS[name] for name in PASSTHROUGH_FILTERS}
        self.env.filters["date"] = self._date_filter
        self.env.filters["split"] = _split_filter
        self.env.globals["now"] = self.clock.now
        self._cache: dict[str, Template] = {}

    @property
    def filter_names(self) -> list[str]:
        return sorted(self.env.filters)

    def _date_filter(self, value: Any = None, fmt: str = "%Y-%m-%d") -> str:
        if value is None or isinstance(value, Undefined) or value == "now":
            instant: date = self.clock.now()
        elif isinstance(value, (datetime, date)):
            instant = value
        else:
            instant = parse_instant(str(value))
        return instant.strftime(fmt)

    def compile(self, text: str) -> Template:
        template = self._cache.get(text)
        if template is None:
            template = self.env.from_string(text)
            if len(self._cache) > 256:
                self._cache.clear()
            self._cache[text] = template
        return template

    def render(self, text: str, variables: dict[str, Any] | None = None) -> str:
        """
        Render ``text`` with ``variables``.

        Raises:
            StepError: (kind Template) on syntax errors, unknown filters,
                strict-mode undefined names or filter failures
        """
        try:
            return self.compile(text).render(**(variables or {}))
        except TemplateError as exc:
            raise StepError(StepErrorKind.TEMPLATE, f"Template error: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise StepError(StepErrorKind.TEMPLATE, f"Template filter failed: {exc}") from exc

    def interpolate(self, text: str, variables: dict[str, Any] | None = None) -> str:
        """Render only when ``text`` contains template markup."""
        if not isinstance(text, str) or not has_markup(text):
            return text
        return self.render(text, variables)

    def __repr__(self) -> str:
        return f"TemplateRenderer(strict={self.strict})"


def _split_filter(value: Any, sep: str | None = None) -> list[str]:
    if value is None or isinstance(value, Undefined):
        return []
    return str(value).split(sep)


__all__ = ["PASSTHROUGH_FILTERS", "TemplateRenderer", "has_markup"]
