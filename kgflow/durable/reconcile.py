"""
Startup reconciliation of the durable namespace.

Repairs what a crashed process can leave behind:
- locks whose TTL has elapsed are released
- jobs claimed by a worker that stopped reporting are requeued
- jobs that finished but never got their receipt have it appended, then acked
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .locks import LockManager
from .queue import JobStatus, QueueManager
from .receipts import ReceiptWriter

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    released_locks: list[str] = field(default_factory=list)
    requeued_jobs: list[str] = field(default_factory=list)
    receipts_written: list[str] = field(default_factory=list)
    acked_jobs: list[str] = field(default_factory=list)

    @property
    def repaired(self) -> int:
        return len(self.released_locks) + len(self.requeued_jobs) + len(self.receipts_written)

    def to_dict(self) -> dict[str, Any]:
        return {
            "releasedLocks": list(self.released_locks),
            "requeuedJobs": list(self.requeued_jobs),
            "receiptsWritten": list(self.receipts_written),
            "ackedJobs": list(self.acked_jobs),
        }


class Reconciler:
    def __init__(
        self,
        locks: LockManager,
        queue: QueueManager,
        receipts: ReceiptWriter,
        stranded_grace_s: float = 300.0,
        time_fn: Callable[[], float] = time.time,
    ):
        self.locks = locks
        self.queue = queue
        self.receipts = receipts
        self.stranded_grace_s = stranded_grace_s
        self.time_fn = time_fn

    def reconcile(self) -> ReconcileReport:
        report = ReconcileReport()
        report.released_locks = self.locks.cleanup_expired()

        now = self.time_fn()
        for job in self.queue.claimed():
            if job.status == JobStatus.RUNNING.value:
                claimed_at = job.claimed_at or job.enqueued_at
                if now - claimed_at >= self.stranded_grace_s:
                    self.queue.requeue(job)
                    report.requeued_jobs.append(job.id)
                continue

            draft = (job.result or {}).get("receipt")
            if isinstance(draft, dict) and self.receipts.find_by_job(job.id) is None:
                draft.setdefault("job_id", job.id)
                self.receipts.append(draft)
                report.receipts_written.append(job.id)
            self.queue.ack(job)
            report.acked_jobs.append(job.id)

        if report.repaired:
            logger.info(
                f"[reconcile] released {len(report.released_locks)} locks, "
                f"requeued {len(report.requeued_jobs)} jobs, "
                f"wrote {len(report.receipts_written)} missing receipts"
            )
        return report


__all__ = ["ReconcileReport", "Reconciler"]
