from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class WorkerStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Worker(BaseModel):
    """A barista. Holds at most one in-progress item at a time."""

    id: int | None = None
    name: str
    status: WorkerStatus = WorkerStatus.AVAILABLE
    current_load: int = Field(default=0, ge=0)  # remaining minutes on the active item
    total_completed: int = Field(default=0, ge=0)

    def take_on(self, duration: int) -> None:
        self.current_load += duration
        self.status = WorkerStatus.BUSY

    def finish(self) -> None:
        """Drop remaining load and count one served item."""
        self.current_load = 0
        self.total_completed += 1
        if self.status is not WorkerStatus.OFFLINE:
            self.status = WorkerStatus.AVAILABLE
