from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from brewqueue.db.database import Database
from brewqueue.models.work_item import WorkItem
from brewqueue.models.worker import Worker, WorkerStatus
from brewqueue.services.assignment import AssignmentEngine
from brewqueue.services.scoring import rescore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_RECALC_INTERVAL = 30.0
DEFAULT_ASSIGN_INTERVAL = 30.0
DEFAULT_DECAY_INTERVAL = 60.0


class PeriodicLoop:
    """Runs :meth:`tick` once per ``interval`` seconds in a background task.

    Ticks of one loop never overlap: the task sleeps, ticks, and only then
    sleeps again. A tick that raises is logged and the loop carries on.
    """

    name = "loop"

    def __init__(self, db: Database, interval: float, clock: Clock | None = None):
        self.db = db
        self.interval = interval
        self._clock = clock or datetime.now
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("%s loop started (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("%s loop stopped", self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("%s tick failed", self.name)

    async def tick(self, now: datetime | None = None):
        raise NotImplementedError


class RecalculationLoop(PeriodicLoop):
    """Re-scores every pending item against one ``now`` per tick."""

    name = "recalculation"

    def __init__(
        self,
        db: Database,
        interval: float = DEFAULT_RECALC_INTERVAL,
        clock: Clock | None = None,
    ):
        super().__init__(db, interval, clock)

    async def tick(self, now: datetime | None = None) -> int:
        """Returns the number of items re-scored."""
        now = now or self._clock()
        updated = 0
        async with self.db.transaction():
            pending = await self.db.list_pending()
            logger.debug("Recalculating priorities for %d pending items", len(pending))

            for item in pending:
                try:
                    async with self.db.savepoint("rescore"):
                        rescore(item, now)
                        await self.db.save_item(item)
                except Exception:
                    logger.exception("Failed to re-score item %s, skipping", item.id)
                    continue
                updated += 1
        return updated


class AssignmentLoop(PeriodicLoop):
    """Hands one pending item to each available worker per tick."""

    name = "assignment"

    def __init__(
        self,
        db: Database,
        engine: AssignmentEngine | None = None,
        interval: float = DEFAULT_ASSIGN_INTERVAL,
        clock: Clock | None = None,
    ):
        super().__init__(db, interval, clock)
        self.engine = engine or AssignmentEngine(db)

    async def tick(self, now: datetime | None = None) -> list[WorkItem]:
        """Returns the items assigned during this tick."""
        now = now or self._clock()
        assigned: list[WorkItem] = []

        async with self.db.transaction():
            workers = await self.db.list_workers_by_status(WorkerStatus.AVAILABLE)
            pending = await self.db.list_pending_sorted()
            avg_workload = await self.db.average_worker_load()

            for worker in workers:
                if not pending:
                    break

                active = await self.db.find_active_item_for_worker(worker.id)
                if active is not None:
                    logger.warning(
                        "Worker %s is available but still holds item %s, skipping",
                        worker.name,
                        active.id,
                    )
                    continue

                selected = self.engine.select_for_worker(worker, pending, avg_workload)
                if selected is None:
                    continue

                try:
                    assignment = await self.engine.assign(worker, selected, pending, now)
                except Exception:
                    logger.exception(
                        "Failed to assign item %s to worker %s, skipping",
                        selected.id,
                        worker.name,
                    )
                    pending = [p for p in pending if p.id != selected.id]
                    continue

                bumped = {s.id: s for s in assignment.skipped}
                pending = [bumped.get(p.id, p) for p in pending if p.id != selected.id]
                assigned.append(assignment.item)

        if assigned:
            logger.debug("Assignment tick placed %d items", len(assigned))
        return assigned


class WorkloadDecayLoop(PeriodicLoop):
    """Burns down one minute of load per busy worker per tick.

    When a worker's load hits zero its active item is completed and the
    worker is freed.
    """

    name = "workload-decay"

    def __init__(
        self,
        db: Database,
        interval: float = DEFAULT_DECAY_INTERVAL,
        clock: Clock | None = None,
    ):
        super().__init__(db, interval, clock)

    async def tick(self, now: datetime | None = None) -> list[WorkItem]:
        """Returns the items completed during this tick."""
        now = now or self._clock()
        completed: list[WorkItem] = []

        async with self.db.transaction():
            for worker in await self.db.list_all_workers():
                if worker.current_load == 0 and worker.status is not WorkerStatus.BUSY:
                    continue
                try:
                    async with self.db.savepoint("decay"):
                        item = await self._decay(worker, now)
                except Exception:
                    logger.exception("Failed to decay load for worker %s, skipping", worker.name)
                    continue
                if item is not None:
                    completed.append(item)
        return completed

    async def _decay(self, worker: Worker, now: datetime) -> WorkItem | None:
        had_load = worker.current_load > 0
        if had_load:
            worker.current_load -= 1
            if worker.current_load > 0:
                await self.db.save_worker(worker)
                return None

        active = await self.db.find_active_item_for_worker(worker.id)
        if active is None:
            if had_load:
                logger.warning("Worker %s had load but no active item", worker.name)
            else:
                logger.warning("Worker %s was busy with no load and no active item", worker.name)
            if worker.status is WorkerStatus.BUSY:
                worker.status = WorkerStatus.AVAILABLE
            await self.db.save_worker(worker)
            return None

        if not had_load:
            logger.warning(
                "Worker %s had no load left on item %s, completing it", worker.name, active.id
            )

        active.mark_completed(now)
        worker.finish()
        await self.db.save_item(active)
        await self.db.save_worker(worker)
        await self.db.log_event(
            "item_completed",
            item_id=active.id,
            worker_id=worker.id,
            details={"wait_minutes": active.wait_minutes, "source": "decay"},
        )
        logger.info(
            "Completed item %s by worker %s (wait time: %d min)",
            active.id,
            worker.name,
            active.wait_minutes,
        )
        return active


class QueueScheduler:
    """Hosts the recalculation, assignment and workload-decay loops together."""

    def __init__(
        self,
        db: Database,
        recalc_interval: float = DEFAULT_RECALC_INTERVAL,
        assign_interval: float = DEFAULT_ASSIGN_INTERVAL,
        decay_interval: float = DEFAULT_DECAY_INTERVAL,
        clock: Clock | None = None,
        engine: AssignmentEngine | None = None,
    ):
        self.recalculation = RecalculationLoop(db, recalc_interval, clock)
        self.assignment = AssignmentLoop(db, engine, assign_interval, clock)
        self.decay = WorkloadDecayLoop(db, decay_interval, clock)

    @property
    def loops(self) -> tuple[PeriodicLoop, ...]:
        return (self.recalculation, self.assignment, self.decay)

    async def start(self) -> None:
        for loop in self.loops:
            await loop.start()

    async def stop(self) -> None:
        for loop in self.loops:
            await loop.stop()

    async def tick_all(self, now: datetime | None = None) -> dict[str, int]:
        """Run one tick of every loop in order; returns per-loop counts."""
        rescored = await self.recalculation.tick(now)
        assigned = await self.assignment.tick(now)
        completed = await self.decay.tick(now)
        return {"rescored": rescored, "assigned": len(assigned), "completed": len(completed)}
