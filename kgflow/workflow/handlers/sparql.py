"""
SPARQL step handler.

The query text is interpolated with the step inputs, missing prefixes are
injected, and the query runs against the shared store on a worker thread.
Updates take the store's writer lock inside ``execute``.

When the step is abandoned (timeout or cancellation) while an update is
still evaluating, the thread is told to drop its staged changes instead of
committing them.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from kgflow.errors import QueryError, StepErrorKind
from kgflow.store.sparql import execute

from ..models import Step, StepType
from .base import HandlerEnv, StepHandler

logger = logging.getLogger(__name__)


class SparqlHandler(StepHandler):
    type = StepType.SPARQL
    error_kind = StepErrorKind.QUERY

    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        query = env.renderer.interpolate(str(step.config["query"]), inputs)
        started = env.clock.monotonic()
        abort = threading.Event()
        try:
            result = await asyncio.to_thread(execute, env.store, query, None, abort)
        except QueryError as exc:
            raise self.fail(step, str(exc)) from exc
        except asyncio.CancelledError:
            abort.set()
            logger.warning(f"[sparql] {step.id}: abandoned, pending update will not be committed")
            raise

        data = result.to_dict()
        data["metadata"] = {
            **result.metadata,
            "queryLength": len(query),
            "executionTime": env.clock.elapsed_ms(started),
            "epoch": env.store.epoch,
        }
        logger.debug(f"[sparql] {step.id}: {result.type} returned {result.count} items")
        return data


__all__ = ["SparqlHandler"]
