"""
DurableIO bundles the durable services that share one root directory and
one git repository.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

from kgflow.clock import Clock
from kgflow.config import EngineSettings

from .layout import DurableLayout
from .locks import LockManager
from .queue import QueueManager
from .receipts import ReceiptWriter
from .reconcile import Reconciler
from .snapshots import SnapshotStore
from .workers import JobHandler, WorkerPool


class DurableIO:
    def __init__(
        self,
        root: Path,
        clock: Clock | None = None,
        signing_key: str | None = None,
        git_dir: Path | None = None,
        lock_ttl_ms: int = 60_000,
        lock_deadline_ms: int = 30_000,
        stranded_grace_s: float = 300.0,
        time_fn: Callable[[], float] = time.time,
    ):
        self.clock = clock or Clock()
        self.layout = DurableLayout(root, git_dir).ensure()
        self.locks = LockManager(
            self.layout,
            default_ttl_ms=lock_ttl_ms,
            default_deadline_ms=lock_deadline_ms,
            time_fn=time_fn,
        )
        self.queue = QueueManager(self.layout, time_fn=time_fn)
        self.receipts = ReceiptWriter(self.layout, signing_key=signing_key, clock=self.clock)
        self.snapshots = SnapshotStore(self.layout, clock=self.clock)
        self.reconciler = Reconciler(
            self.locks,
            self.queue,
            self.receipts,
            stranded_grace_s=stranded_grace_s,
            time_fn=time_fn,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings, clock: Clock | None = None) -> DurableIO:
        key = settings.receipt_signing_key
        return cls(
            settings.durable_dir,
            clock=clock or Clock(settings.now),
            signing_key=key.get_secret_value() if key is not None else None,
            git_dir=settings.git_dir,
            lock_ttl_ms=settings.lock_ttl_ms,
            lock_deadline_ms=settings.lock_deadline_ms,
            stranded_grace_s=settings.stranded_grace_s,
        )

    @property
    def root(self) -> Path:
        return self.layout.root

    def close(self) -> None:
        self.layout.close()

    def worker_pool(self, handler: JobHandler, size: int = 4, poll_interval: float = 0.5) -> WorkerPool:
        return WorkerPool(self.queue, handler, self.receipts, size=size, poll_interval=poll_interval)

    def __repr__(self) -> str:
        return f"DurableIO(root={self.root})"


__all__ = ["DurableIO"]
