"""
Ref layout of the durable substrate.

Records are git blobs named by refs in one repository (``<root>/git`` by
default):

    refs/kgflow/locks/<name>                         held lock {owner, acquiredAt, ttlMs}
    refs/kgflow/queues/<level>/pending/<seq>         pending jobs
    refs/kgflow/queues/<level>/claimed/<seq>         jobs taken by a worker
    refs/kgflow/queues/<level>/head                  last claimed sequence number
    refs/notes/kgflow/receipts/<index>               hash-chained receipts
    refs/notes/kgflow/metrics/<n>                    one metrics record per run
    refs/notes/kgflow/executions/<id>                exported execution contexts
    refs/kgflow/snapshots/<key>/<hash>               content-addressed blobs
    refs/kgflow/snapshots/<key>/latest               hash of the newest blob
    refs/notes/kgflow/snapshots/<key>/<hash>         snapshot info

Every change is a single ``update-ref`` with an expected old value.
"""

from __future__ import annotations

import re
from pathlib import Path

from kgflow.errors import DurableIoError

from .gitstore import GitStore, canonical_json

QUEUE_LEVELS = ("high", "normal", "low")

LOCKS_REF = "refs/kgflow/locks"
QUEUES_REF = "refs/kgflow/queues"
SNAPSHOTS_REF = "refs/kgflow/snapshots"
NOTES_REF = "refs/notes/kgflow"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def safe_name(name: str) -> str:
    """Form of a lock or snapshot key usable as one ref component."""
    cleaned = _UNSAFE.sub("_", name.strip())
    if not cleaned or cleaned in (".", ".."):
        raise DurableIoError(f"Invalid durable name: {name!r}")
    # git refuses "..", a leading or trailing dot and a ".lock" suffix
    cleaned = re.sub(r"\.{2,}", "_", cleaned)
    if cleaned.startswith("."):
        cleaned = "_" + cleaned[1:]
    if cleaned.endswith("."):
        cleaned = cleaned[:-1] + "_"
    if cleaned.endswith(".lock"):
        cleaned += "_"
    return cleaned


def seq_name(seq: int) -> str:
    return f"{seq:012d}"


class DurableLayout:
    """Ref names of the durable namespace and the repository that holds them."""

    def __init__(self, root: Path, git_dir: Path | None = None):
        self.root = Path(root)
        self.git_dir = Path(git_dir) if git_dir is not None else self.root / "git"
        self._git: GitStore | None = None

    @property
    def git(self) -> GitStore:
        if self._git is None:
            self._git = GitStore(self.git_dir)
        return self._git

    def lock_ref(self, name: str) -> str:
        return f"{LOCKS_REF}/{safe_name(name)}"

    def queue_ref(self, level: str) -> str:
        return f"{QUEUES_REF}/{level}"

    def pending_ref(self, level: str, seq: int | None = None) -> str:
        base = f"{self.queue_ref(level)}/pending"
        return base if seq is None else f"{base}/{seq_name(seq)}"

    def claimed_ref(self, level: str, seq: int | None = None) -> str:
        base = f"{self.queue_ref(level)}/claimed"
        return base if seq is None else f"{base}/{seq_name(seq)}"

    def head_ref(self, level: str) -> str:
        return f"{self.queue_ref(level)}/head"

    @property
    def receipts_ref(self) -> str:
        return f"{NOTES_REF}/receipts"

    def receipt_ref(self, index: int) -> str:
        return f"{self.receipts_ref}/{index:08d}"

    @property
    def metrics_ref(self) -> str:
        return f"{NOTES_REF}/metrics"

    def execution_ref(self, execution_id: str) -> str:
        return f"{NOTES_REF}/executions/{safe_name(execution_id)}"

    def snapshot_ref(self, key: str, content_hash: str | None = None) -> str:
        base = f"{SNAPSHOTS_REF}/{safe_name(key)}"
        return base if content_hash is None else f"{base}/{content_hash}"

    def snapshot_info_ref(self, key: str, content_hash: str | None = None) -> str:
        base = f"{NOTES_REF}/snapshots/{safe_name(key)}"
        return base if content_hash is None else f"{base}/{content_hash}"

    def ensure(self) -> DurableLayout:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DurableIoError(f"Cannot create durable root {self.root}: {exc}") from exc
        if self._git is None:
            self._git = GitStore(self.git_dir)
        return self

    def close(self) -> None:
        if self._git is not None:
            self._git.close()

    def __repr__(self) -> str:
        return f"DurableLayout(root={self.root}, git_dir={self.git_dir})"


__all__ = [
    "QUEUE_LEVELS",
    "DurableLayout",
    "canonical_json",
    "safe_name",
    "seq_name",
]
