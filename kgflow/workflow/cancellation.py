"""
Cooperative cancellation.

A token is created per execution and checked at every suspension point:
before each step, between retry attempts, while waiting for a workflow
lock and after each wave. Cancelling never interrupts a step mid-I/O; the
current step finishes and the run stops.

The token is thread-safe, so work running in a thread (SPARQL updates) can
poll it before committing.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

from kgflow.errors import CancelledError

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.05


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Execution cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"[cancel] {reason}")

    def check(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self._event.is_set():
            raise CancelledError(self.reason or "Execution cancelled")

    async def sleep(self, delay: float) -> None:
        """
        Sleep for ``delay`` seconds unless cancelled first.

        Raises:
            CancelledError: If the token is cancelled before or during the sleep
        """
        self.check()
        deadline = time.monotonic() + max(0.0, delay)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, POLL_INTERVAL_S))
            self.check()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


__all__ = ["CancellationToken"]
