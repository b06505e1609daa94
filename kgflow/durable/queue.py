"""
Durable priority queue.

Three levels are drained in order: ``high``, ``normal``, ``low``. Each job is
a blob named by a ref whose last component is a zero-padded sequence
number, so a sorted ref listing is already FIFO order.

    enqueue   ->  create queues/<level>/pending/<seq>
    dequeue   ->  create queues/<level>/claimed/<seq>, delete pending/<seq>,
                  advance queues/<level>/head
    complete  ->  claimed ref swapped to the record with the result
    ack       ->  claimed ref deleted

Creating the claimed ref is the claim: it fails for every worker but one.
``head`` holds the highest sequence number handed to a worker and only
moves forward; it is advanced with compare-and-swap and re-read on a lost
race.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from kgflow.errors import DurableIoError

from .gitstore import ZERO_OID, GitStore, canonical_json
from .layout import QUEUE_LEVELS, DurableLayout, seq_name

if TYPE_CHECKING:
    from kgflow.workflow.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobRecord(BaseModel):
    """One queued unit of work, as stored in its blob."""

    id: str
    seq: int
    level: str = "normal"
    job: dict[str, Any] = Field(default_factory=dict, description="Work description, e.g. workflowId and inputs")
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    enqueued_at: float = Field(..., alias="enqueuedAt")
    worker_id: str | None = Field(None, alias="workerId")
    claimed_at: float | None = Field(None, alias="claimedAt")
    completed_at: float | None = Field(None, alias="completedAt")
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    attempts: int = 0

    class Config:
        populate_by_name = True
        use_enum_values = True

    @property
    def name(self) -> str:
        return seq_name(self.seq)

    def to_json(self) -> str:
        return canonical_json(self.model_dump(by_alias=True, mode="json"))


def _seq_of(ref: str) -> int:
    return int(ref.rsplit("/", 1)[-1])


class QueueManager:
    def __init__(
        self,
        layout: DurableLayout,
        time_fn: Callable[[], float] = time.time,
        cas_retries: int = 50,
        cas_wait: float = 0.01,
    ):
        self.layout = layout
        self.time_fn = time_fn
        self.cas_retries = cas_retries
        self.cas_wait = cas_wait

    @property
    def git(self) -> GitStore:
        return self.layout.git

    @staticmethod
    def _check_level(level: str) -> str:
        if level not in QUEUE_LEVELS:
            raise ValueError(f"Unknown queue level '{level}', expected one of {', '.join(QUEUE_LEVELS)}")
        return level

    def _load(self, ref: str, sha: str) -> JobRecord | None:
        try:
            return JobRecord.model_validate(self.git.read_json(sha))
        except ValidationError:
            logger.warning(f"[queue] unreadable job record at {ref}")
            return None

    def _pending_refs(self, level: str) -> list[tuple[str, str]]:
        return self.git.list_refs(self.layout.pending_ref(level))

    def _claimed_refs(self, level: str) -> list[tuple[str, str]]:
        return self.git.list_refs(self.layout.claimed_ref(level))

    def _head(self, level: str) -> tuple[str | None, int]:
        sha = self.git.read_ref(self.layout.head_ref(level))
        if sha is None:
            return None, 0
        return sha, int(self.git.read_blob(sha).decode("utf-8").strip() or 0)

    def read_head(self, level: str) -> int:
        return self._head(level)[1]

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    def _next_seq(self, level: str) -> int:
        highest = self.read_head(level)
        for ref, _ in self._pending_refs(level) + self._claimed_refs(level):
            highest = max(highest, _seq_of(ref))
        return highest + 1

    def enqueue(
        self,
        job: dict[str, Any],
        level: str = "normal",
        metadata: dict[str, Any] | None = None,
    ) -> JobRecord:
        self._check_level(level)
        seq = self._next_seq(level)
        record_id = uuid.uuid4().hex
        for _ in range(self.cas_retries):
            record = JobRecord(
                id=record_id,
                seq=seq,
                level=level,
                job=dict(job),
                metadata=dict(metadata or {}),
                enqueued_at=self.time_fn(),
            )
            sha = self.git.write_blob(record.to_json())
            if self.git.create_ref(self.layout.pending_ref(level, seq), sha):
                logger.info(f"[queue] enqueued job {record.id} at {level}/{seq}")
                return record
            seq += 1
        raise DurableIoError(f"Cannot allocate a sequence number on queue {level}")

    # -------------------------------------------------------------------------
    # Dequeue
    # -------------------------------------------------------------------------

    def _advance_head(self, level: str, seq: int) -> None:
        ref = self.layout.head_ref(level)
        for _ in range(self.cas_retries):
            current, head = self._head(level)
            if head >= seq:
                return
            sha = self.git.write_blob(f"{seq}\n")
            if self.git.swap_ref(ref, sha, current or ZERO_OID):
                return
        logger.warning(f"[queue] could not advance {level} head to {seq}")

    def _claim(self, level: str, worker_id: str) -> JobRecord | None:
        claimed = {_seq_of(ref) for ref, _ in self._claimed_refs(level)}
        for ref, sha in self._pending_refs(level):
            seq = _seq_of(ref)
            if seq in claimed:
                # A claim that crashed before dropping the pending ref
                self.git.delete_ref(ref, sha)
                continue
            record = self._load(ref, sha)
            if record is None:
                continue
            record.status = JobStatus.RUNNING.value
            record.worker_id = worker_id
            record.claimed_at = self.time_fn()
            record.attempts += 1
            if not self.git.create_ref(self.layout.claimed_ref(level, seq), self.git.write_blob(record.to_json())):
                # Another worker claimed it first
                claimed.add(seq)
                continue
            self.git.delete_ref(ref, sha)
            self._advance_head(level, seq)
            logger.debug(f"[queue] {worker_id} claimed job {record.id} ({level}/{seq})")
            return record
        return None

    async def dequeue(self, worker_id: str, token: CancellationToken | None = None) -> JobRecord | None:
        """Claim the oldest job of the highest non-empty level, or None."""
        for level in QUEUE_LEVELS:
            for _ in range(self.cas_retries):
                if token is not None:
                    token.check()
                record = self._claim(level, worker_id)
                if record is not None:
                    return record
                if not self._pending_refs(level):
                    break
                await asyncio.sleep(self.cas_wait)
        return None

    # -------------------------------------------------------------------------
    # Claimed jobs
    # -------------------------------------------------------------------------

    def _finish(self, record: JobRecord, status: JobStatus, **changes: Any) -> JobRecord:
        ref = self.layout.claimed_ref(record.level, record.seq)
        for _ in range(self.cas_retries):
            sha = self.git.read_ref(ref)
            current = self._load(ref, sha) if sha is not None else None
            if current is None:
                raise DurableIoError(f"Job {record.id} is not claimed")
            current.status = status.value
            current.completed_at = self.time_fn()
            for key, value in changes.items():
                setattr(current, key, value)
            if self.git.swap_ref(ref, self.git.write_blob(current.to_json()), sha):
                return current
        raise DurableIoError(f"Cannot update job {record.id}: too many concurrent writers")

    def complete(self, record: JobRecord, result: dict[str, Any] | None = None) -> JobRecord:
        done = self._finish(record, JobStatus.COMPLETED, result=result or {})
        logger.debug(f"[queue] job {record.id} completed")
        return done

    def fail(self, record: JobRecord, error: dict[str, Any], result: dict[str, Any] | None = None) -> JobRecord:
        done = self._finish(record, JobStatus.FAILED, error=error, result=result or {})
        logger.warning(f"[queue] job {record.id} failed: {error.get('message', error)}")
        return done

    def ack(self, record: JobRecord) -> None:
        """Remove a finished job for good. Acking twice is a no-op."""
        self.git.delete_ref(self.layout.claimed_ref(record.level, record.seq))

    def requeue(self, record: JobRecord) -> JobRecord:
        """Put a claimed job back at its original position."""
        claimed = self.layout.claimed_ref(record.level, record.seq)
        sha = self.git.read_ref(claimed)
        current = (self._load(claimed, sha) if sha is not None else None) or record
        current.status = JobStatus.QUEUED.value
        current.worker_id = None
        current.claimed_at = None
        pending = self.layout.pending_ref(record.level, record.seq)
        if not self.git.create_ref(pending, self.git.write_blob(current.to_json())):
            raise DurableIoError(f"Cannot requeue job {record.id}: {record.level}/{record.seq} is already pending")
        self.git.delete_ref(claimed, sha)
        logger.info(f"[queue] requeued job {record.id} ({record.level}/{record.seq})")
        return current

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def _records(self, refs: list[tuple[str, str]]) -> list[JobRecord]:
        return [r for r in (self._load(ref, sha) for ref, sha in refs) if r is not None]

    def pending(self, level: str | None = None) -> list[JobRecord]:
        levels = [self._check_level(level)] if level else list(QUEUE_LEVELS)
        return self._records([pair for lv in levels for pair in self._pending_refs(lv)])

    def claimed(self, level: str | None = None) -> list[JobRecord]:
        levels = [self._check_level(level)] if level else list(QUEUE_LEVELS)
        return self._records([pair for lv in levels for pair in self._claimed_refs(lv)])

    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {}
        for level in QUEUE_LEVELS:
            claimed = self.claimed(level)
            stats[level] = {
                "pending": len(self._pending_refs(level)),
                "running": sum(1 for r in claimed if r.status == JobStatus.RUNNING.value),
                "finished": sum(1 for r in claimed if r.status != JobStatus.RUNNING.value),
                "head": self.read_head(level),
            }
        return stats


__all__ = ["JobRecord", "JobStatus", "QueueManager"]
