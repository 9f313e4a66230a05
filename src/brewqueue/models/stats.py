from __future__ import annotations

from pydantic import BaseModel


class QueueStats(BaseModel):
    """Snapshot of the pending queue."""

    total_pending: int = 0
    avg_wait_minutes: int = 0
    max_wait_minutes: int = 0
    emergency_count: int = 0
