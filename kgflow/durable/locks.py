"""
Named locks with TTL.

A lock is held while ``refs/kgflow/locks/<name>`` exists. Acquisition
creates the ref with a zero old value, so at most one caller can succeed
for a name. A lock whose TTL has elapsed is reclaimed by swapping the ref
from the expired record to the new one; a concurrent reclaimer that read
the same record loses the swap. A record that cannot be read is treated as
held and never reclaimed automatically.

Usage:
    locks = LockManager(layout)
    async with await locks.acquire("build", ttl_ms=60_000, deadline_ms=5_000):
        ...
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from kgflow.errors import LockError

from .gitstore import GitStore
from .layout import LOCKS_REF, DurableLayout

if TYPE_CHECKING:
    from kgflow.workflow.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class LockRecord(BaseModel):
    name: str
    owner: str
    acquired_at: float = Field(..., alias="acquiredAt", description="Unix time in seconds")
    ttl_ms: int = Field(..., alias="ttlMs")

    class Config:
        populate_by_name = True

    def expires_at(self) -> float:
        return self.acquired_at + self.ttl_ms / 1000

    def expired(self, now: float) -> bool:
        return now >= self.expires_at()


class LockHandle:
    """A held lock. Releasing twice is a no-op."""

    def __init__(self, manager: LockManager, record: LockRecord):
        self.manager = manager
        self.record = record
        self.released = False

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def owner(self) -> str:
        return self.record.owner

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        self.manager.release(self.record.name, self.record.owner)

    async def __aenter__(self) -> LockHandle:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    def __repr__(self) -> str:
        return f"LockHandle(name={self.name!r}, owner={self.owner!r}, released={self.released})"


class LockManager:
    def __init__(
        self,
        layout: DurableLayout,
        default_ttl_ms: int = 60_000,
        default_deadline_ms: int = 30_000,
        poll_interval: float = 0.05,
        time_fn: Callable[[], float] = time.time,
    ):
        self.layout = layout
        self.default_ttl_ms = default_ttl_ms
        self.default_deadline_ms = default_deadline_ms
        self.poll_interval = poll_interval
        self.time_fn = time_fn
        self._owner_prefix = f"{os.getpid()}-{uuid.uuid4().hex[:8]}"

    @property
    def git(self) -> GitStore:
        return self.layout.git

    def new_owner(self) -> str:
        return f"{self._owner_prefix}-{uuid.uuid4().hex[:8]}"

    def _read(self, ref: str) -> tuple[str | None, LockRecord | None]:
        """Current object id of ``ref`` and its record (None when unreadable)."""
        sha = self.git.read_ref(ref)
        if sha is None:
            return None, None
        data = self.git.read_json(sha)
        try:
            return sha, LockRecord.model_validate(data)
        except ValidationError:
            logger.warning(f"[locks] unreadable lock record at {ref} ({sha[:12]})")
            return sha, None

    # -------------------------------------------------------------------------
    # Acquire / Release
    # -------------------------------------------------------------------------

    def try_acquire(self, name: str, ttl_ms: int | None = None, owner: str | None = None) -> LockHandle | None:
        """One non-blocking attempt; reclaims the lock if its TTL has elapsed."""
        ref = self.layout.lock_ref(name)
        record = LockRecord(
            name=name,
            owner=owner or self.new_owner(),
            acquired_at=self.time_fn(),
            ttl_ms=ttl_ms if ttl_ms is not None else self.default_ttl_ms,
        )
        sha = self.git.write_json(record.model_dump(by_alias=True))

        if self.git.create_ref(ref, sha):
            logger.debug(f"[locks] acquired {name} ({record.owner})")
            return LockHandle(self, record)

        current, holder = self._read(ref)
        if current is None:
            # Released between our create and the read
            if self.git.create_ref(ref, sha):
                logger.debug(f"[locks] acquired {name} ({record.owner})")
                return LockHandle(self, record)
            return None
        if holder is None or not holder.expired(self.time_fn()):
            return None
        if self.git.swap_ref(ref, sha, current):
            logger.info(f"[locks] reclaimed expired lock {name} from {holder.owner} ({record.owner})")
            return LockHandle(self, record)
        return None

    async def acquire(
        self,
        name: str,
        ttl_ms: int | None = None,
        deadline_ms: int | None = None,
        owner: str | None = None,
        token: CancellationToken | None = None,
    ) -> LockHandle:
        """
        Wait for the lock until the deadline, then raise LockError.

        Raises:
            LockError: The deadline passed with the lock still held
            CancelledError: ``token`` was cancelled while waiting
        """
        deadline = deadline_ms if deadline_ms is not None else self.default_deadline_ms
        give_up = time.monotonic() + deadline / 1000
        while True:
            if token is not None:
                token.check()
            handle = self.try_acquire(name, ttl_ms, owner)
            if handle is not None:
                return handle
            if time.monotonic() >= give_up:
                holder = self.lock_info(name)
                raise LockError(
                    name,
                    f"Could not acquire lock '{name}' within {deadline} ms"
                    + (f" (held by {holder.owner})" if holder else ""),
                )
            if token is not None:
                await token.sleep(self.poll_interval)
            else:
                await asyncio.sleep(self.poll_interval)

    def release(self, name: str, owner: str) -> bool:
        """Delete the lock if ``owner`` holds it; False otherwise."""
        ref = self.layout.lock_ref(name)
        current, record = self._read(ref)
        if record is None or record.owner != owner:
            return False
        if not self.git.delete_ref(ref, current):
            return False
        logger.debug(f"[locks] released {name} ({owner})")
        return True

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def lock_info(self, name: str) -> LockRecord | None:
        return self._read(self.layout.lock_ref(name))[1]

    def is_locked(self, name: str) -> bool:
        current, record = self._read(self.layout.lock_ref(name))
        if current is None:
            return False
        return record is None or not record.expired(self.time_fn())

    def _entries(self) -> list[tuple[str, str, LockRecord]]:
        entries = []
        for ref, sha in self.git.list_refs(LOCKS_REF):
            try:
                entries.append((ref, sha, LockRecord.model_validate(self.git.read_json(sha))))
            except ValidationError:
                logger.warning(f"[locks] unreadable lock record at {ref} ({sha[:12]})")
        return entries

    def list_locks(self) -> list[LockRecord]:
        return [record for _, _, record in self._entries()]

    def cleanup_expired(self) -> list[str]:
        """Release every lock whose TTL has elapsed; returns their names."""
        now = self.time_fn()
        released = []
        for ref, sha, record in self._entries():
            if record.expired(now) and self.git.delete_ref(ref, sha):
                released.append(record.name)
                logger.info(f"[locks] released expired lock {record.name} (owner {record.owner})")
        return released


__all__ = ["LockHandle", "LockManager", "LockRecord"]
