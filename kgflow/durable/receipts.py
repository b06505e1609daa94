"""
Hash-chained execution receipts.

Receipt N stores the SHA-256 of receipt N-1 in ``prevHash``; its own
``hash`` covers every field except ``hash`` and ``signature``. With a
signing key configured, ``signature`` is the HMAC-SHA256 of the hash.

Receipts are blobs under ``refs/notes/kgflow/receipts/<index>``, numbered by
append order, not by store epoch: two firings can happen at the same epoch.
Appending creates the next index ref with a zero old value, so two writers
racing for one index cannot both win; the loser re-chains onto the winner.

Alongside receipts the writer keeps two kinds of notes:
- ``refs/notes/kgflow/metrics/<n>``: one record per run
- ``refs/notes/kgflow/executions/<executionId>``: the exported execution context
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from kgflow.clock import Clock
from kgflow.errors import DurableIoError

from .gitstore import GitStore, canonical_json
from .layout import DurableLayout

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


class Receipt(BaseModel):
    index: int
    hook_id: str | None = Field(None, alias="hookId")
    workflow_id: str | None = Field(None, alias="workflowId")
    execution_id: str | None = Field(None, alias="executionId")
    job_id: str | None = Field(None, alias="jobId")
    epoch: int = 0
    started_at: str = Field(..., alias="startedAt")
    ended_at: str = Field(..., alias="endedAt")
    status: str = "success"
    success: bool = True
    step_results: list[dict[str, Any]] = Field(default_factory=list, alias="stepResults")
    error: dict[str, Any] | None = None
    evidence: dict[str, Any] = Field(default_factory=dict)
    prev_hash: str = Field(GENESIS_HASH, alias="prevHash")
    hash: str = ""
    signature: str | None = None

    class Config:
        populate_by_name = True

    def body(self) -> dict[str, Any]:
        """Fields covered by the hash."""
        return self.model_dump(by_alias=True, mode="json", exclude={"hash", "signature"})

    def compute_hash(self) -> str:
        return hashlib.sha256(canonical_json(self.body()).encode("utf-8")).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def sign(key: str, digest: str) -> str:
    return hmac.new(key.encode("utf-8"), digest.encode("utf-8"), hashlib.sha256).hexdigest()


class ReceiptWriter:
    def __init__(self, layout: DurableLayout, signing_key: str | None = None, clock: Clock | None = None):
        self.layout = layout
        self.signing_key = signing_key
        self.clock = clock or Clock()
        self._lock = threading.Lock()

    @property
    def git(self) -> GitStore:
        return self.layout.git

    def _load(self, ref: str, sha: str) -> Receipt | None:
        try:
            return Receipt.model_validate(self.git.read_json(sha))
        except ValidationError:
            logger.warning(f"[receipts] unreadable receipt {ref.rsplit('/', 1)[-1]}")
            return None

    def _refs(self) -> list[tuple[str, str]]:
        return self.git.list_refs(self.layout.receipts_ref)

    # -------------------------------------------------------------------------
    # Append
    # -------------------------------------------------------------------------

    def append(self, draft: dict[str, Any]) -> Receipt:
        """
        Chain and persist a receipt.

        Args:
            draft: Receipt fields (snake_case or camelCase); ``index``,
                ``prevHash``, ``hash`` and ``signature`` are assigned here.

        Raises:
            DurableIoError: If the receipt cannot be written
        """
        fields = {k: v for k, v in draft.items() if k not in ("index", "prev_hash", "prevHash", "hash", "signature")}
        fields.setdefault("started_at", fields.pop("startedAt", None) or self.clock.isoformat())
        fields.setdefault("ended_at", fields.pop("endedAt", None) or self.clock.isoformat())

        with self._lock:
            try:
                for _ in range(100):
                    previous = self.latest()
                    index = previous.index + 1 if previous else 1
                    receipt = Receipt(
                        index=index,
                        prev_hash=previous.hash if previous else GENESIS_HASH,
                        **fields,
                    )
                    receipt.hash = receipt.compute_hash()
                    if self.signing_key:
                        receipt.signature = sign(self.signing_key, receipt.hash)
                    sha = self.git.write_json(receipt.to_dict())
                    if self.git.create_ref(self.layout.receipt_ref(index), sha):
                        logger.info(
                            f"[receipts] #{index} {receipt.workflow_id or receipt.hook_id} "
                            f"status={receipt.status}"
                        )
                        return receipt
                    # Another process appended first; chain onto its receipt
            except ValidationError as exc:
                raise DurableIoError(f"Cannot write receipt: {exc}") from exc
        raise DurableIoError("Cannot write receipt: too many concurrent appends")

    def write_metrics(self, record: dict[str, Any]) -> None:
        sha = self.git.write_json(record)
        for _ in range(100):
            refs = self.git.list_refs(self.layout.metrics_ref)
            number = int(refs[-1][0].rsplit("/", 1)[-1]) + 1 if refs else 1
            if self.git.create_ref(f"{self.layout.metrics_ref}/{number:08d}", sha):
                return
        raise DurableIoError("Cannot append metrics: too many concurrent appends")

    def write_execution(self, execution_id: str, export: dict[str, Any]) -> None:
        self.git.set_ref(self.layout.execution_ref(execution_id), self.git.write_json(export))

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def receipts(self) -> list[Receipt]:
        return [r for r in (self._load(ref, sha) for ref, sha in self._refs()) if r is not None]

    def latest(self) -> Receipt | None:
        for ref, sha in reversed(self._refs()):
            receipt = self._load(ref, sha)
            if receipt is not None:
                return receipt
        return None

    def find_by_job(self, job_id: str) -> Receipt | None:
        for receipt in self.receipts():
            if receipt.job_id == job_id:
                return receipt
        return None

    def find_by_execution(self, execution_id: str) -> Receipt | None:
        for receipt in self.receipts():
            if receipt.execution_id == execution_id:
                return receipt
        return None

    def metrics(self) -> list[dict[str, Any]]:
        return [self.git.read_json(sha) for _, sha in self.git.list_refs(self.layout.metrics_ref)]

    def read_execution(self, execution_id: str) -> dict[str, Any] | None:
        sha = self.git.read_ref(self.layout.execution_ref(execution_id))
        return self.git.read_json(sha) if sha is not None else None

    def verify_chain(self) -> list[str]:
        """Problems found in the chain; empty when every link checks out."""
        problems = []
        previous_hash = GENESIS_HASH
        for expected_index, receipt in enumerate(self.receipts(), start=1):
            if receipt.index != expected_index:
                problems.append(f"receipt {receipt.index}: expected index {expected_index}")
            if receipt.prev_hash != previous_hash:
                problems.append(f"receipt {receipt.index}: prevHash does not match receipt {receipt.index - 1}")
            if receipt.compute_hash() != receipt.hash:
                problems.append(f"receipt {receipt.index}: content hash mismatch")
            if self.signing_key and receipt.signature != sign(self.signing_key, receipt.hash):
                problems.append(f"receipt {receipt.index}: bad signature")
            previous_hash = receipt.hash
        return problems


__all__ = ["GENESIS_HASH", "Receipt", "ReceiptWriter", "sign"]
