"""
Worker pool draining the durable queue.

Each claimed job is handed to an async handler. The handler returns a
result dict; if it carries a ``receipt`` draft, the draft is appended to the
receipt chain before the job is acknowledged. The order

    complete -> append receipt -> ack

means a crash between any two writes leaves a claimed job that the
Reconciler can finish without writing a second receipt.

Concurrency is bounded by an ``asyncio.Semaphore``; one job occupies one slot
for its whole run.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from kgflow.errors import KgflowError

from .queue import JobRecord, QueueManager
from .receipts import ReceiptWriter

logger = logging.getLogger(__name__)

JobHandler = Callable[[JobRecord], Awaitable[dict[str, Any]]]


class WorkerPool:
    def __init__(
        self,
        queue: QueueManager,
        handler: JobHandler,
        receipts: ReceiptWriter | None = None,
        size: int = 4,
        poll_interval: float = 0.5,
        name: str | None = None,
    ):
        if size < 1:
            raise ValueError("WorkerPool size must be at least 1")
        self.queue = queue
        self.handler = handler
        self.receipts = receipts
        self.size = size
        self.poll_interval = poll_interval
        self.name = name or f"pool-{uuid.uuid4().hex[:6]}"

        self._semaphore = asyncio.Semaphore(size)
        self._tasks: set[asyncio.Task] = set()
        self._dispatcher: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._slot = 0
        self.processed: list[JobRecord] = []

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _worker_id(self) -> str:
        self._slot += 1
        return f"{self.name}-{self._slot}"

    # -------------------------------------------------------------------------
    # Job processing
    # -------------------------------------------------------------------------

    def _failure_result(self, job: JobRecord, exc: Exception) -> dict[str, Any]:
        error = exc.to_dict() if isinstance(exc, KgflowError) else {"kind": type(exc).__name__, "message": str(exc)}
        return {
            "error": error,
            "receipt": {
                "hook_id": job.job.get("hookId"),
                "workflow_id": job.job.get("workflowId"),
                "job_id": job.id,
                "status": "failed",
                "success": False,
                "error": error,
            },
        }

    async def process(self, job: JobRecord) -> JobRecord:
        """Run one claimed job through handler, receipt and ack."""
        try:
            result = await self.handler(job)
            failed = False
        except Exception as exc:
            logger.error(f"[workers] job {job.id} raised {type(exc).__name__}: {exc}")
            result = self._failure_result(job, exc)
            failed = True

        draft = result.get("receipt")
        if isinstance(draft, dict):
            draft.setdefault("job_id", job.id)

        if failed or result.get("success") is False:
            finished = self.queue.fail(job, result.get("error") or {"message": "job failed"}, result=result)
        else:
            finished = self.queue.complete(job, result)

        if self.receipts is not None and isinstance(draft, dict) and self.receipts.find_by_job(job.id) is None:
            self.receipts.append(draft)
        self.queue.ack(job)
        self.processed.append(finished)
        return finished

    async def _run_slot(self, job: JobRecord) -> None:
        try:
            await self.process(job)
        finally:
            self._semaphore.release()

    def _spawn(self, job: JobRecord) -> None:
        task = asyncio.create_task(self._run_slot(job), name=f"{self.name}:{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _dispatch(self) -> None:
        while not self._stopping.is_set():
            await self._semaphore.acquire()
            job = await self.queue.dequeue(self._worker_id())
            if job is None:
                self._semaphore.release()
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue
            self._spawn(job)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._dispatcher = asyncio.create_task(self._dispatch(), name=f"{self.name}:dispatch")
        logger.info(f"[workers] {self.name} started with {self.size} slots")

    async def stop(self, drain: bool = True) -> None:
        """Stop pulling jobs; wait for in-flight jobs unless ``drain`` is False."""
        self._stopping.set()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        if self._tasks:
            if drain:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            else:
                for task in list(self._tasks):
                    task.cancel()
        logger.info(f"[workers] {self.name} stopped")

    async def run_until_idle(self) -> list[JobRecord]:
        """Process jobs until the queue is empty and nothing is in flight."""
        start = len(self.processed)
        while True:
            await self._semaphore.acquire()
            job = await self.queue.dequeue(self._worker_id())
            if job is None:
                self._semaphore.release()
                if not self._tasks:
                    break
                await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
                continue
            self._spawn(job)
        return self.processed[start:]


__all__ = ["JobHandler", "WorkerPool"]
