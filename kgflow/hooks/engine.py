"""
Hook Engine.

On each tick every hook in the store is evaluated against the current
store state; hooks whose predicate holds are fired, concurrently with each
other. Firing runs the hook's action (normally the workflow executor, which
runs the ordered pipelines in sequence) and yields exactly one receipt.

Firing cadence is a polled tick:

    engine = HookEngine(store, action=executor.fire_hook, receipts=durable.receipts)
    receipts = await engine.tick()          # one evaluation pass
    await engine.run(interval=5.0, stop_event=stop)

Level predicates (Ask, Threshold, ShapeConformance) fire on the rising edge
only: once fired, a hook stays latched while its predicate keeps holding and
re-arms when the predicate stops holding or ``reset()`` is called.

ResultDelta predicates keep the fingerprint of the last result that fired.
The fingerprint is written into the receipt evidence and re-seeded from the
receipt log by ``seed_from_receipts()``, so it survives restarts.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from kgflow.clock import Clock
from kgflow.durable.receipts import Receipt, ReceiptWriter
from kgflow.errors import KgflowError, QueryError
from kgflow.observability import EngineMetrics, get_metrics
from kgflow.store.quadstore import QuadStore
from kgflow.store.turtle import UriResolver

from .discovery import discover
from .models import (
    AskPredicate,
    Evaluation,
    Hook,
    ResultDeltaPredicate,
    ShapePredicate,
    ThresholdPredicate,
)
from .predicates import evaluate_ask, evaluate_shape, evaluate_threshold, fingerprint

logger = logging.getLogger(__name__)

HookAction = Callable[[Hook, Evaluation], Awaitable["Receipt | dict[str, Any] | None"]]


class HookEngine:
    def __init__(
        self,
        store: QuadStore,
        action: HookAction | None = None,
        receipts: ReceiptWriter | None = None,
        clock: Clock | None = None,
        metrics: EngineMetrics | None = None,
        resolver: UriResolver | None = None,
    ):
        self.store = store
        self.action = action
        self.receipts = receipts
        self.clock = clock or Clock()
        self.metrics = metrics or get_metrics()
        self.resolver = resolver

        self._fingerprints: dict[str, str] = {}
        self._latched: set[str] = set()
        self._state_lock = threading.Lock()
        self.tick_count = 0

    # -------------------------------------------------------------------------
    # Discovery and evaluation
    # -------------------------------------------------------------------------

    def discover(self) -> list[Hook]:
        return discover(self.store, self.resolver)

    def fingerprint_of(self, hook_id: str) -> str | None:
        return self._fingerprints.get(hook_id)

    def is_latched(self, hook_id: str) -> bool:
        return hook_id in self._latched

    def evaluate(self, hook: Hook) -> Evaluation:
        """
        Evaluate a hook's predicate against the store.

        For ResultDelta the stored fingerprint advances whenever the result
        reports ``fired``, so evaluating twice without a store change yields
        ``fired=False`` the second time. Level predicates are reported as
        they are; latching happens in ``tick()``.
        """
        predicate = hook.predicate
        if predicate is None:
            return Evaluation(hook.id, False, {"type": "none"})

        try:
            if isinstance(predicate, AskPredicate):
                fired, evidence = evaluate_ask(predicate, self.store)
            elif isinstance(predicate, ThresholdPredicate):
                fired, evidence = evaluate_threshold(predicate, self.store)
            elif isinstance(predicate, ShapePredicate):
                fired, evidence = evaluate_shape(predicate, self.store)
            elif isinstance(predicate, ResultDeltaPredicate):
                current = fingerprint(self.store.query(predicate.query))
                with self._state_lock:
                    previous = self._fingerprints.get(hook.id)
                    fired = current != previous
                    if fired:
                        self._fingerprints[hook.id] = current
                evidence = {"type": "delta", "fingerprint": current, "previous": previous}
            else:
                raise TypeError(f"Unknown predicate type {type(predicate).__name__}")
        except QueryError as exc:
            logger.warning(f"[hooks] predicate of {hook.id} failed: {exc}")
            return Evaluation(hook.id, False, {"type": predicate.kind.value, "error": exc.to_dict()})

        evidence["epoch"] = self.store.epoch
        return Evaluation(hook.id, fired, evidence)

    def reset(self, hook_id: str | None = None) -> None:
        """Re-arm one hook (or all): clears its latch and delta fingerprint."""
        with self._state_lock:
            if hook_id is None:
                self._latched.clear()
                self._fingerprints.clear()
            else:
                self._latched.discard(hook_id)
                self._fingerprints.pop(hook_id, None)
        logger.debug(f"[hooks] reset {hook_id or 'all hooks'}")

    def seed_from_receipts(self) -> int:
        """Restore ResultDelta fingerprints from the receipt log."""
        if self.receipts is None:
            return 0
        seeded = 0
        for receipt in self.receipts.receipts():
            value = receipt.evidence.get("fingerprint")
            if receipt.hook_id and value:
                self._fingerprints[receipt.hook_id] = value
                seeded += 1
        if seeded:
            logger.info(f"[hooks] seeded {len(self._fingerprints)} delta fingerprints from receipts")
        return seeded

    # -------------------------------------------------------------------------
    # Firing
    # -------------------------------------------------------------------------

    def _should_fire(self, hook: Hook, evaluation: Evaluation) -> bool:
        if not hook.is_level:
            return evaluation.fired
        with self._state_lock:
            if not evaluation.fired:
                self._latched.discard(hook.id)
                return False
            if hook.id in self._latched:
                return False
            self._latched.add(hook.id)
            return True

    def _fallback_receipt(self, hook: Hook, evaluation: Evaluation, error: dict[str, Any] | None) -> dict[str, Any]:
        now = self.clock.isoformat()
        return {
            "hook_id": hook.id,
            "workflow_id": hook.id,
            "epoch": self.store.epoch,
            "started_at": now,
            "ended_at": now,
            "status": "failed" if error else "success",
            "success": error is None,
            "error": error,
            "evidence": evaluation.evidence,
        }

    async def fire(self, hook: Hook, evaluation: Evaluation) -> Receipt | dict[str, Any] | None:
        """Run the hook's action; always produces one receipt when a writer is set."""
        logger.info(f"[hooks] firing {hook.id} ({hook.predicate.kind.value if hook.predicate else 'none'})")
        self.metrics.record_hook(fired=True)

        if self.action is None:
            draft = self._fallback_receipt(hook, evaluation, None)
            return self.receipts.append(draft) if self.receipts is not None else draft

        try:
            return await self.action(hook, evaluation)
        except KgflowError as exc:
            logger.error(f"[hooks] action for {hook.id} failed: {exc}")
            error = exc.to_dict()
        except Exception as exc:
            logger.error(f"[hooks] action for {hook.id} raised {type(exc).__name__}: {exc}")
            error = {"kind": type(exc).__name__, "message": str(exc)}
        draft = self._fallback_receipt(hook, evaluation, error)
        return self.receipts.append(draft) if self.receipts is not None else draft

    async def tick(self) -> list[Receipt | dict[str, Any] | None]:
        """One evaluation pass; returns the receipts of hooks fired, in hook order."""
        self.tick_count += 1
        to_fire = []
        for hook in self.discover():
            evaluation = self.evaluate(hook)
            if self._should_fire(hook, evaluation):
                to_fire.append((hook, evaluation))
            else:
                self.metrics.record_hook(fired=False)

        if not to_fire:
            logger.debug(f"[hooks] tick {self.tick_count}: nothing to fire")
            return []
        logger.info(f"[hooks] tick {self.tick_count}: firing {len(to_fire)} hooks")
        return list(await asyncio.gather(*(self.fire(hook, ev) for hook, ev in to_fire)))

    async def run(self, interval: float, stop_event: asyncio.Event | None = None) -> None:
        """Tick every ``interval`` seconds until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"[hooks] polling every {interval}s")
        while not stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue


__all__ = ["HookAction", "HookEngine"]
