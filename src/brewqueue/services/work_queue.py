from __future__ import annotations

import logging
from datetime import datetime

from brewqueue.db.database import Database
from brewqueue.errors import InvalidTransition, ItemNotFound, WorkerNotFound
from brewqueue.models.stats import QueueStats
from brewqueue.models.work_item import CallerTier, ItemStatus, WorkItem
from brewqueue.models.worker import Worker, WorkerStatus
from brewqueue.services.assignment import AssignmentEngine
from brewqueue.services.scheduler import Clock
from brewqueue.services.scoring import rescore

logger = logging.getLogger(__name__)


class WorkQueue:
    """Entry points for the calling layer: orders, baristas and queue stats."""

    def __init__(
        self,
        db: Database,
        engine: AssignmentEngine | None = None,
        clock: Clock | None = None,
    ):
        self.db = db
        self.engine = engine or AssignmentEngine(db)
        self._clock = clock or datetime.now

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    async def create_item(
        self,
        label: str,
        base_duration: int,
        quantity: int = 1,
        tier: CallerTier = CallerTier.NONE,
        arrival_time: datetime | None = None,
    ) -> WorkItem:
        now = self._clock()
        item = WorkItem(
            label=label,
            base_duration=base_duration,
            quantity=quantity,
            tier=tier,
            arrival_time=arrival_time or now,
        )
        rescore(item, now)

        async with self.db.transaction():
            await self.db.save_item(item)
            await self.db.log_event(
                "item_created",
                item_id=item.id,
                details={"label": label, "quantity": quantity, "tier": tier.value},
            )

        logger.info(
            "Created item %d: %s x%d (priority: %.2f)",
            item.id,
            label,
            quantity,
            item.priority_score,
        )
        return item

    async def get_item(self, item_id: int) -> WorkItem:
        async with self.db.snapshot():
            item = await self.db.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    async def list_items(self, status: ItemStatus | None = None) -> list[WorkItem]:
        async with self.db.snapshot():
            if status is ItemStatus.PENDING:
                return await self.db.list_pending_sorted()
            return await self.db.list_items(status)

    async def assign_next(self, worker_id: int) -> WorkItem | None:
        """Give ``worker_id`` its next item now, outside the assignment loop.

        Returns None when the queue is empty or the worker cannot take work.
        """
        now = self._clock()
        async with self.db.transaction():
            worker = await self.db.get_worker(worker_id)
            if worker is None:
                raise WorkerNotFound(worker_id)

            if worker.status is not WorkerStatus.AVAILABLE:
                logger.info("Worker %s is %s, not assigning", worker.name, worker.status.value)
                return None

            active = await self.db.find_active_item_for_worker(worker_id)
            if active is not None:
                logger.warning("Worker %s still holds item %s", worker.name, active.id)
                return None

            pending = await self.db.list_pending_sorted()
            if not pending:
                logger.info("No pending items for worker %s", worker.name)
                return None

            avg_workload = await self.db.average_worker_load()
            selected = self.engine.select_for_worker(worker, pending, avg_workload)
            if selected is None:
                return None

            assignment = await self.engine.assign(worker, selected, pending, now)
        return assignment.item

    async def complete_item(self, item_id: int) -> WorkItem:
        """Finish an in-progress item early and free its worker."""
        now = self._clock()
        async with self.db.transaction():
            item = await self.db.get_item(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            if item.status is not ItemStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Item {item_id} is {item.status.value}, only in-progress items can be completed"
                )

            item.mark_completed(now)
            await self.db.save_item(item)

            worker = (
                await self.db.get_worker(item.assigned_worker_id)
                if item.assigned_worker_id is not None
                else None
            )
            if worker is not None:
                worker.finish()
                await self.db.save_worker(worker)

            await self.db.log_event(
                "item_completed",
                item_id=item.id,
                worker_id=item.assigned_worker_id,
                details={"wait_minutes": item.wait_minutes, "source": "manual"},
            )

        logger.info("Completed item %d (wait time: %d min)", item.id, item.wait_minutes)
        return item

    async def cancel_item(self, item_id: int) -> WorkItem:
        async with self.db.transaction():
            item = await self.db.get_item(item_id)
            if item is None:
                raise ItemNotFound(item_id)
            if item.status is not ItemStatus.PENDING:
                raise InvalidTransition(
                    f"Item {item_id} is {item.status.value}, only pending items can be cancelled"
                )

            item.status = ItemStatus.CANCELLED
            await self.db.save_item(item)
            await self.db.log_event("item_cancelled", item_id=item.id)

        logger.info("Cancelled item %d", item.id)
        return item

    async def queue_stats(self) -> QueueStats:
        now = self._clock()
        async with self.db.snapshot():
            pending = await self.db.list_pending()
        if not pending:
            return QueueStats()

        waits = [item.wait_at(now) for item in pending]
        return QueueStats(
            total_pending=len(pending),
            avg_wait_minutes=int(sum(waits) / len(waits)),
            max_wait_minutes=max(waits),
            emergency_count=sum(1 for item in pending if item.emergency),
        )

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def register_worker(self, name: str) -> Worker:
        worker = Worker(name=name)
        async with self.db.transaction():
            await self.db.save_worker(worker)
            await self.db.log_event("worker_registered", worker_id=worker.id, details={"name": name})
        logger.info("Registered worker %d: %s", worker.id, name)
        return worker

    async def list_workers(self) -> list[Worker]:
        async with self.db.snapshot():
            return await self.db.list_all_workers()

    async def set_worker_status(self, worker_id: int, status: WorkerStatus) -> Worker:
        async with self.db.transaction():
            worker = await self.db.get_worker(worker_id)
            if worker is None:
                raise WorkerNotFound(worker_id)

            active = await self.db.find_active_item_for_worker(worker_id)
            if active is not None and status is WorkerStatus.AVAILABLE:
                raise InvalidTransition(
                    f"Worker {worker_id} is still preparing item {active.id}"
                )
            if active is None and status is WorkerStatus.BUSY:
                raise InvalidTransition(
                    f"Worker {worker_id} has no active item and cannot be marked busy"
                )

            previous = worker.status
            worker.status = status
            await self.db.save_worker(worker)
            await self.db.log_event(
                "worker_status_changed",
                worker_id=worker.id,
                details={"from": previous.value, "to": status.value},
            )

        logger.info("Set worker %s status to %s", worker.name, status.value)
        return worker
