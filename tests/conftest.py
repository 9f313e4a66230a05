from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from brewqueue.db.database import Database
from brewqueue.models.work_item import CallerTier, ItemStatus, WorkItem
from brewqueue.models.worker import Worker, WorkerStatus
from brewqueue.services.assignment import AssignmentEngine
from brewqueue.services.fairness import FairnessTracker
from brewqueue.services.work_queue import WorkQueue

START = datetime(2026, 3, 2, 8, 0, 0)


class FakeClock:
    """Manually advanced clock for deterministic elapsed-time tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now += timedelta(minutes=minutes, seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
async def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "test.db")
    await database.initialize()
    yield database  # type: ignore[misc]
    await database.close()


@pytest.fixture
def fairness() -> FairnessTracker:
    return FairnessTracker()


@pytest.fixture
def engine(db: Database, fairness: FairnessTracker) -> AssignmentEngine:
    return AssignmentEngine(db, fairness)


@pytest.fixture
def work_queue(db: Database, engine: AssignmentEngine, clock: FakeClock) -> WorkQueue:
    return WorkQueue(db, engine, clock)


@pytest.fixture
def add_item(db: Database, clock: FakeClock):
    """Insert a work item directly, bypassing scoring."""

    async def _add(
        label: str = "latte",
        base_duration: int = 2,
        quantity: int = 1,
        tier: CallerTier = CallerTier.NONE,
        arrival: datetime | None = None,
        score: float = 0.0,
        emergency: bool = False,
        skip_count: int = 0,
        status: ItemStatus = ItemStatus.PENDING,
        worker_id: int | None = None,
    ) -> WorkItem:
        item = WorkItem(
            label=label,
            base_duration=base_duration,
            quantity=quantity,
            tier=tier,
            arrival_time=arrival or clock.now,
            priority_score=score,
            emergency=emergency,
            skip_count=skip_count,
            status=status,
            assigned_worker_id=worker_id,
        )
        async with db.transaction():
            await db.save_item(item)
        return item

    return _add


@pytest.fixture
def add_worker(db: Database):
    """Insert a worker directly with the given state."""

    async def _add(
        name: str = "alice",
        status: WorkerStatus = WorkerStatus.AVAILABLE,
        current_load: int = 0,
    ) -> Worker:
        worker = Worker(name=name, status=status, current_load=current_load)
        async with db.transaction():
            await db.save_worker(worker)
        return worker

    return _add
