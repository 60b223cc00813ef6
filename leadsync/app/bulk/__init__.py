"""Bulk processing: adaptive batching, progress tracking and request queueing."""

from leadsync.app.bulk.engine import BatchResult, BulkRunResult, BulkSyncEngine
from leadsync.app.bulk.progress import ProgressSnapshot, ProgressSummary, ProgressTracker
from leadsync.app.bulk.queue import AdaptiveBatchQueue, Batch, QueueStatus
from leadsync.app.bulk.request_queue import RequestQueue

__all__ = [
    "AdaptiveBatchQueue",
    "Batch",
    "QueueStatus",
    "ProgressTracker",
    "ProgressSnapshot",
    "ProgressSummary",
    "BulkSyncEngine",
    "BatchResult",
    "BulkRunResult",
    "RequestQueue",
]
