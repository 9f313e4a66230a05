"""Exceptions raised by brewqueue operations.

All of them are raised before anything is written, so the enclosing
transaction rolls back with no partial state change.
"""

from __future__ import annotations

__all__ = [
    "BrewQueueError",
    "InvalidTransition",
    "ItemNotFound",
    "WorkerNotFound",
]


class BrewQueueError(Exception):
    """Base class for all brewqueue errors."""


class ItemNotFound(BrewQueueError):
    def __init__(self, item_id: int):
        super().__init__(f"Work item not found: {item_id}")
        self.item_id = item_id


class WorkerNotFound(BrewQueueError):
    def __init__(self, worker_id: int):
        super().__init__(f"Worker not found: {worker_id}")
        self.worker_id = worker_id


class InvalidTransition(BrewQueueError):
    """A status change that the item or worker lifecycle does not allow."""
