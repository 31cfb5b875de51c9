"""Job scheduling: cancellation, keyed queues and due-scan sweeps."""

from .cancel import CancelToken
from .due import DueScheduler, get_due_manual_roots, get_due_volumes, is_due
from .queue import QueueCounts, ScanJob, ScanQueue

__all__ = [
    "CancelToken",
    "DueScheduler",
    "QueueCounts",
    "ScanJob",
    "ScanQueue",
    "get_due_manual_roots",
    "get_due_volumes",
    "is_due",
]
