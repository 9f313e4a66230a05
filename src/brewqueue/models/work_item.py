from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CallerTier(str, Enum):
    GOLD = "gold"
    REGULAR = "regular"
    NEW = "new"
    NONE = "none"


def elapsed_minutes(since: datetime, now: datetime) -> int:
    """Whole minutes between ``since`` and ``now``, never negative."""
    return max(0, int((now - since).total_seconds() // 60))


class WorkItem(BaseModel):
    """A drink order waiting for, or being prepared by, a barista."""

    id: int | None = None
    label: str = ""
    base_duration: int = Field(ge=1)  # minutes per unit
    quantity: int = Field(default=1, ge=1)
    tier: CallerTier = CallerTier.NONE
    status: ItemStatus = ItemStatus.PENDING
    priority_score: float = Field(default=0.0, ge=0.0, le=100.0)
    emergency: bool = False
    skip_count: int = Field(default=0, ge=0)
    arrival_time: datetime = Field(default_factory=datetime.now)
    assigned_worker_id: Optional[int] = None
    assigned_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    wait_minutes: Optional[int] = None

    @property
    def duration(self) -> int:
        return self.base_duration * self.quantity

    def wait_at(self, now: datetime) -> int:
        return elapsed_minutes(self.arrival_time, now)

    def mark_assigned(self, worker_id: int, now: datetime) -> None:
        self.status = ItemStatus.IN_PROGRESS
        self.assigned_worker_id = worker_id
        self.assigned_time = now

    def mark_completed(self, now: datetime) -> None:
        self.status = ItemStatus.COMPLETED
        self.completion_time = now
        self.wait_minutes = self.wait_at(now)
