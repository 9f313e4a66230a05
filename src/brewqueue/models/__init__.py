from brewqueue.models.work_item import CallerTier, ItemStatus, WorkItem
from brewqueue.models.worker import Worker, WorkerStatus
from brewqueue.models.stats import QueueStats

__all__ = [
    "CallerTier",
    "ItemStatus",
    "WorkItem",
    "Worker",
    "WorkerStatus",
    "QueueStats",
]
