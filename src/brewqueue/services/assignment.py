from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from brewqueue.db.database import Database
from brewqueue.errors import InvalidTransition
from brewqueue.models.work_item import ItemStatus, WorkItem
from brewqueue.models.worker import Worker
from brewqueue.services.fairness import FairnessTracker

logger = logging.getLogger(__name__)

OVERLOAD_FACTOR = 1.2
QUICK_ITEM_MAX_DURATION = 2  # minutes


def priority_order(item: WorkItem) -> tuple:
    """Sort key: highest score first, then earliest arrival."""
    return (-item.priority_score, item.arrival_time, item.id or 0)


@dataclass
class Assignment:
    item: WorkItem
    worker: Worker
    skipped: list[WorkItem] = field(default_factory=list)


class AssignmentEngine:
    """Picks the next item for a worker and commits the hand-off.

    Selection rules, first match wins:
    1. Emergency items, regardless of the worker's load.
    2. An overloaded worker (load above 1.2x the average) gets the first
       quick item (2 minutes or less), if there is one.
    3. Otherwise the highest-scored item.
    """

    def __init__(self, db: Database, fairness: FairnessTracker | None = None):
        self.db = db
        self.fairness = fairness or FairnessTracker()

    def select_for_worker(
        self,
        worker: Worker,
        pending: Sequence[WorkItem],
        avg_workload: float,
    ) -> WorkItem | None:
        candidates = sorted(
            (item for item in pending if item.status is ItemStatus.PENDING),
            key=priority_order,
        )
        if not candidates:
            return None

        for item in candidates:
            if item.emergency:
                return item

        if worker.current_load > OVERLOAD_FACTOR * avg_workload:
            logger.debug(
                "Worker %s is overloaded (load %d, avg %.2f), looking for quick items",
                worker.name,
                worker.current_load,
                avg_workload,
            )
            for item in candidates:
                if item.duration <= QUICK_ITEM_MAX_DURATION:
                    return item

        return candidates[0]

    async def assign(
        self,
        worker: Worker,
        item: WorkItem,
        pending: Sequence[WorkItem],
        now: datetime,
    ) -> Assignment:
        """Move ``item`` to ``worker`` and record the skips it caused.

        Works on copies and writes inside one savepoint, so on failure the
        passed-in objects and the store are left untouched. The caller must
        hold :meth:`Database.transaction`.
        """
        if worker.id is None or item.id is None:
            raise InvalidTransition("Only saved items and workers can be assigned")

        assigned_item = item.model_copy()
        assigned_item.mark_assigned(worker.id, now)

        busy_worker = worker.model_copy()
        busy_worker.take_on(assigned_item.duration)

        others = [p.model_copy() for p in pending if p.id != item.id]
        skipped = self.fairness.penalize_skipped(assigned_item, others)

        async with self.db.savepoint("assignment"):
            await self.db.save_item(assigned_item)
            await self.db.save_worker(busy_worker)
            for skipped_item in skipped:
                await self.db.save_item(skipped_item)
            await self.db.log_event(
                "item_assigned",
                item_id=assigned_item.id,
                worker_id=busy_worker.id,
                details={
                    "priority_score": assigned_item.priority_score,
                    "emergency": assigned_item.emergency,
                    "skipped": [s.id for s in skipped],
                },
            )

        logger.info(
            "Assigned item %s to worker %s (priority: %.2f, duration: %d min)",
            assigned_item.id,
            busy_worker.name,
            assigned_item.priority_score,
            assigned_item.duration,
        )
        return Assignment(item=assigned_item, worker=busy_worker, skipped=skipped)
