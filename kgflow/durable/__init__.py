"""
kgflow Durable I/O

Git-native queue, named locks, chained receipts and content-addressed
snapshots kept as blobs and refs in one repository (``.kgflow/git`` by
default), plus a worker pool and startup reconciliation.
"""

from .gitstore import GitStore
from .io import DurableIO
from .layout import QUEUE_LEVELS, DurableLayout
from .locks import LockHandle, LockManager, LockRecord
from .queue import JobRecord, JobStatus, QueueManager
from .receipts import GENESIS_HASH, Receipt, ReceiptWriter
from .reconcile import ReconcileReport, Reconciler
from .snapshots import SnapshotInfo, SnapshotStore
from .workers import JobHandler, WorkerPool

__all__ = [
    "GENESIS_HASH",
    "QUEUE_LEVELS",
    "DurableIO",
    "DurableLayout",
    "GitStore",
    "JobHandler",
    "JobRecord",
    "JobStatus",
    "LockHandle",
    "LockManager",
    "LockRecord",
    "QueueManager",
    "Receipt",
    "ReceiptWriter",
    "ReconcileReport",
    "Reconciler",
    "SnapshotInfo",
    "SnapshotStore",
    "WorkerPool",
]
