"""Integration tests that drive the queue minute by minute.

These tests follow what the running service does: orders arrive through
the WorkQueue, and the recalculation, assignment and decay loops take them
from pending to completed.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from brewqueue.db.database import Database
from brewqueue.models.work_item import ItemStatus
from brewqueue.models.worker import WorkerStatus
from brewqueue.services.scheduler import QueueScheduler
from brewqueue.services.work_queue import WorkQueue


@pytest.fixture
async def services(tmp_path: Path, clock):
    db = Database(tmp_path / "integration.db")
    await db.initialize()

    wq = WorkQueue(db, clock=clock)
    scheduler = QueueScheduler(db, clock=clock, engine=wq.engine)

    yield {"db": db, "clock": clock, "work_queue": wq, "scheduler": scheduler}

    await db.close()


@pytest.mark.asyncio
class TestQueueFlow:
    async def test_every_order_is_served(self, services: dict) -> None:
        db: Database = services["db"]
        clock = services["clock"]
        wq: WorkQueue = services["work_queue"]
        scheduler: QueueScheduler = services["scheduler"]

        opened = clock.now
        alice = await wq.register_worker("alice")
        cold_brew = await wq.create_item("cold brew", base_duration=4)
        espresso = await wq.create_item("espresso", base_duration=1)
        latte = await wq.create_item("latte", base_duration=2)

        completion_order: list[int] = []
        for _ in range(10):
            before = {i.id for i in await wq.list_items(ItemStatus.COMPLETED)}
            await scheduler.tick_all(clock.advance(minutes=1))
            after = await wq.list_items(ItemStatus.COMPLETED)
            completion_order.extend(i.id for i in after if i.id not in before)

        # shortest first, the long order once its wait pushes it up
        assert completion_order == [espresso.id, latte.id, cold_brew.id]

        stats = await wq.queue_stats()
        assert stats.total_pending == 0

        worker = await db.get_worker(alice.id)
        assert worker.status is WorkerStatus.AVAILABLE
        assert worker.current_load == 0
        assert worker.total_completed == 3

        done = await wq.get_item(cold_brew.id)
        assert done.assigned_time == opened + timedelta(minutes=4)
        assert done.completion_time == opened + timedelta(minutes=7)
        assert done.wait_minutes == 7

    async def test_old_order_overtakes_stream_of_quick_orders(self, services: dict) -> None:
        clock = services["clock"]
        wq: WorkQueue = services["work_queue"]
        scheduler: QueueScheduler = services["scheduler"]

        await wq.register_worker("alice")
        slow = await wq.create_item("pour over", base_duration=6)

        newcomers = []
        for _ in range(4):
            clock.advance(minutes=1)
            newcomers.append(await wq.create_item("espresso", base_duration=1))
            await scheduler.tick_all()

        stored = await wq.get_item(slow.id)
        assert stored.status is ItemStatus.IN_PROGRESS
        assert stored.skip_count == 3
        assert [(await wq.get_item(i.id)).status for i in newcomers] == [
            ItemStatus.COMPLETED,
            ItemStatus.COMPLETED,
            ItemStatus.COMPLETED,
            ItemStatus.PENDING,
        ]

    async def test_waiting_order_becomes_emergency(self, services: dict) -> None:
        clock = services["clock"]
        wq: WorkQueue = services["work_queue"]
        scheduler: QueueScheduler = services["scheduler"]

        item = await wq.create_item("latte", base_duration=2)
        await scheduler.tick_all(clock.advance(minutes=8))

        stored = await wq.get_item(item.id)
        assert stored.emergency is True
        assert stored.priority_score == 100.0

        stats = await wq.queue_stats()
        assert stats.emergency_count == 1
        assert stats.max_wait_minutes == 8

    async def test_offline_worker_is_not_given_work(self, services: dict) -> None:
        clock = services["clock"]
        wq: WorkQueue = services["work_queue"]
        scheduler: QueueScheduler = services["scheduler"]

        alice = await wq.register_worker("alice")
        await wq.set_worker_status(alice.id, WorkerStatus.OFFLINE)
        item = await wq.create_item("latte", base_duration=2)

        counts = await scheduler.tick_all(clock.advance(minutes=1))

        assert counts["assigned"] == 0
        assert (await wq.get_item(item.id)).status is ItemStatus.PENDING

        await wq.set_worker_status(alice.id, WorkerStatus.AVAILABLE)
        counts = await scheduler.tick_all(clock.advance(minutes=1))

        assert counts["assigned"] == 1
