"""
Content-addressed snapshot store.

Each snapshot is a git blob named by ``refs/kgflow/snapshots/<key>/<sha256>``
with its info in ``refs/notes/kgflow/snapshots/<key>/<sha256>``; the
``latest`` ref of a key names the most recently stored hash. Storing the same
bytes twice writes nothing new.

Usage:
    snapshots = SnapshotStore(layout)
    info = snapshots.store("report", b"...")
    data = snapshots.get("report")                  # latest
    data = snapshots.get("report", info.content_hash)
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from kgflow.clock import Clock

from .gitstore import GitStore
from .layout import SNAPSHOTS_REF, DurableLayout

logger = logging.getLogger(__name__)

LATEST = "latest"


class SnapshotInfo(BaseModel):
    key: str
    content_hash: str = Field(..., alias="contentHash")
    bytes: int
    created_at: str = Field(..., alias="createdAt")
    deduplicated: bool = False

    class Config:
        populate_by_name = True


class SnapshotStore:
    def __init__(self, layout: DurableLayout, clock: Clock | None = None):
        self.layout = layout
        self.clock = clock or Clock()
        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._dedupes = 0

    @property
    def git(self) -> GitStore:
        return self.layout.git

    def _latest_hash(self, key: str) -> str | None:
        sha = self.git.read_ref(f"{self.layout.snapshot_ref(key)}/{LATEST}")
        if sha is None:
            return None
        return self.git.read_blob(sha).decode("utf-8").strip() or None

    def _set_latest(self, key: str, content_hash: str | None) -> None:
        ref = f"{self.layout.snapshot_ref(key)}/{LATEST}"
        if content_hash is None:
            self.git.delete_ref(ref)
        else:
            self.git.set_ref(ref, self.git.write_blob(content_hash + "\n"))

    def _hash_refs(self, key: str) -> list[tuple[str, str]]:
        refs = self.git.list_refs(self.layout.snapshot_ref(key))
        return [(ref, sha) for ref, sha in refs if not ref.endswith(f"/{LATEST}")]

    def store(self, key: str, data: bytes | str) -> SnapshotInfo:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        content_hash = hashlib.sha256(payload).hexdigest()
        info = SnapshotInfo(key=key, content_hash=content_hash, bytes=len(payload), created_at=self.clock.isoformat())

        created = self.git.create_ref(self.layout.snapshot_ref(key, content_hash), self.git.write_blob(payload))
        if created:
            self.git.set_ref(
                self.layout.snapshot_info_ref(key, content_hash),
                self.git.write_json(info.model_dump(by_alias=True, exclude={"deduplicated"})),
            )
            self._writes += 1
            logger.debug(f"[snapshots] stored {key}/{content_hash[:12]} ({len(payload)} bytes)")
        else:
            self._dedupes += 1
        self._set_latest(key, content_hash)
        info.deduplicated = not created
        return info

    def get(self, key: str, content_hash: str | None = None) -> bytes | None:
        """The blob with ``content_hash``, or the latest for ``key``; None if absent."""
        content_hash = content_hash or self._latest_hash(key)
        sha = self.git.read_ref(self.layout.snapshot_ref(key, content_hash)) if content_hash else None
        if sha is None:
            self._misses += 1
            return None
        self._hits += 1
        return self.git.read_blob(sha)

    def has(self, key: str, content_hash: str | None = None) -> bool:
        content_hash = content_hash or self._latest_hash(key)
        return content_hash is not None and self.git.read_ref(self.layout.snapshot_ref(key, content_hash)) is not None

    def remove(self, key: str, content_hash: str | None = None) -> bool:
        """Delete one blob, or every blob of ``key`` when no hash is given."""
        if content_hash is None:
            refs = self.git.list_refs(self.layout.snapshot_ref(key)) + self.git.list_refs(
                self.layout.snapshot_info_ref(key)
            )
            for ref, sha in refs:
                self.git.delete_ref(ref, sha)
            return bool(refs)

        ref = self.layout.snapshot_ref(key, content_hash)
        sha = self.git.read_ref(ref)
        if sha is None or not self.git.delete_ref(ref, sha):
            return False
        self.git.delete_ref(self.layout.snapshot_info_ref(key, content_hash))
        if self._latest_hash(key) == content_hash:
            remaining = self.list(key)
            self._set_latest(key, remaining[-1].content_hash if remaining else None)
        return True

    def _info(self, key: str, content_hash: str, blob_sha: str) -> SnapshotInfo:
        sha = self.git.read_ref(self.layout.snapshot_info_ref(key, content_hash))
        if sha is not None:
            try:
                return SnapshotInfo.model_validate(self.git.read_json(sha))
            except ValidationError:
                logger.warning(f"[snapshots] unreadable info for {key}/{content_hash[:12]}")
        return SnapshotInfo(
            key=key,
            content_hash=content_hash,
            bytes=len(self.git.read_blob(blob_sha)),
            created_at="",
        )

    def list(self, key: str | None = None) -> list[SnapshotInfo]:
        """Snapshots of ``key`` (or of every key), oldest first."""
        if key is not None:
            keys = [key]
        else:
            refs = self.git.list_refs(SNAPSHOTS_REF)
            keys = sorted({ref[len(SNAPSHOTS_REF) + 1 :].split("/", 1)[0] for ref, _ in refs})
        infos = []
        for name in keys:
            entries = [self._info(name, ref.rsplit("/", 1)[-1], sha) for ref, sha in self._hash_refs(name)]
            infos.extend(sorted(entries, key=lambda info: (info.created_at, info.content_hash)))
        return infos

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
            "writes": self._writes,
            "deduplicated": self._dedupes,
        }


__all__ = ["SnapshotInfo", "SnapshotStore"]
