from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib import resources
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from brewqueue.models.work_item import ItemStatus, WorkItem
from brewqueue.models.worker import Worker, WorkerStatus

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/brewqueue.db")

_ITEM_COLUMNS = (
    "id",
    "label",
    "base_duration",
    "quantity",
    "tier",
    "status",
    "priority_score",
    "emergency",
    "skip_count",
    "arrival_time",
    "assigned_worker_id",
    "assigned_time",
    "completion_time",
    "wait_minutes",
)

_WORKER_COLUMNS = ("id", "name", "status", "current_load", "total_completed")


def _ts(value: datetime | None) -> str | None:
    return value.isoformat(timespec="microseconds") if value else None


def _upsert_sql(table: str, columns: tuple[str, ...]) -> str:
    names = ", ".join(columns)
    params = ", ".join(f":{c}" for c in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    return (
        f"INSERT INTO {table} ({names}) VALUES ({params}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


_ITEM_UPSERT = _upsert_sql("work_items", _ITEM_COLUMNS)
_WORKER_UPSERT = _upsert_sql("workers", _WORKER_COLUMNS)


class Database:
    """Async SQLite store shared by the queue operations and the periodic loops.

    Holds a single persistent connection in autocommit mode. Every caller that
    writes goes through :meth:`transaction`, which serialises access with one
    ``asyncio.Lock`` and wraps the work in ``BEGIN IMMEDIATE`` / ``COMMIT``.
    Reads from outside a transaction take the same lock through
    :meth:`snapshot`, so they never see another caller's uncommitted writes.
    Inside a transaction, :meth:`savepoint` makes a single item's transition
    all-or-nothing.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else _DEFAULT_DB_PATH
        self._conn: aiosqlite.Connection | None = None
        self._mu = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the database file, apply the schema, and open the persistent connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        schema_sql = resources.files("brewqueue.db").joinpath("schema.sql").read_text()

        self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(schema_sql)

        logger.info("Database initialized at %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        assert self._conn is not None, "Database not initialized, call initialize() first"
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Hold the store exclusively and commit everything done inside as one unit."""
        async with self._mu:
            try:
                await self.conn.execute("BEGIN IMMEDIATE")
                yield
            except BaseException:
                if self.conn.in_transaction:
                    await self.conn.execute("ROLLBACK")
                raise
            await self.conn.execute("COMMIT")

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[None]:
        """Hold the store for reads only; waits out any open transaction."""
        async with self._mu:
            yield

    @asynccontextmanager
    async def savepoint(self, name: str) -> AsyncIterator[None]:
        """Nested unit inside :meth:`transaction`; undone alone if it raises."""
        await self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            await self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            await self.conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        await self.conn.execute(f"RELEASE SAVEPOINT {name}")

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    async def save_item(self, item: WorkItem) -> WorkItem:
        """Insert or update ``item``; assigns ``item.id`` on first save."""
        params = {
            "id": item.id,
            "label": item.label,
            "base_duration": item.base_duration,
            "quantity": item.quantity,
            "tier": item.tier.value,
            "status": item.status.value,
            "priority_score": item.priority_score,
            "emergency": int(item.emergency),
            "skip_count": item.skip_count,
            "arrival_time": _ts(item.arrival_time),
            "assigned_worker_id": item.assigned_worker_id,
            "assigned_time": _ts(item.assigned_time),
            "completion_time": _ts(item.completion_time),
            "wait_minutes": item.wait_minutes,
        }
        cursor = await self.conn.execute(_ITEM_UPSERT, params)
        if item.id is None:
            item.id = cursor.lastrowid
        return item

    async def get_item(self, item_id: int) -> WorkItem | None:
        cursor = await self.conn.execute("SELECT * FROM work_items WHERE id = ?", (item_id,))
        row = await cursor.fetchone()
        return WorkItem.model_validate(dict(row)) if row else None

    async def list_items(self, status: ItemStatus | None = None) -> list[WorkItem]:
        if status is not None:
            cursor = await self.conn.execute(
                "SELECT * FROM work_items WHERE status = ? ORDER BY arrival_time, id",
                (status.value,),
            )
        else:
            cursor = await self.conn.execute(
                "SELECT * FROM work_items ORDER BY arrival_time, id"
            )
        rows = await cursor.fetchall()
        return [WorkItem.model_validate(dict(row)) for row in rows]

    async def list_pending(self) -> list[WorkItem]:
        return await self.list_items(ItemStatus.PENDING)

    async def list_pending_sorted(self) -> list[WorkItem]:
        """Pending items by score desc, then arrival asc."""
        cursor = await self.conn.execute(
            """
            SELECT * FROM work_items
            WHERE status = 'pending'
            ORDER BY priority_score DESC, arrival_time ASC, id ASC
            """
        )
        rows = await cursor.fetchall()
        return [WorkItem.model_validate(dict(row)) for row in rows]

    async def find_active_item_for_worker(self, worker_id: int) -> WorkItem | None:
        cursor = await self.conn.execute(
            """
            SELECT * FROM work_items
            WHERE assigned_worker_id = ? AND status = 'in_progress'
            LIMIT 1
            """,
            (worker_id,),
        )
        row = await cursor.fetchone()
        return WorkItem.model_validate(dict(row)) if row else None

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def save_worker(self, worker: Worker) -> Worker:
        """Insert or update ``worker``; assigns ``worker.id`` on first save."""
        params = {
            "id": worker.id,
            "name": worker.name,
            "status": worker.status.value,
            "current_load": worker.current_load,
            "total_completed": worker.total_completed,
        }
        cursor = await self.conn.execute(_WORKER_UPSERT, params)
        if worker.id is None:
            worker.id = cursor.lastrowid
        return worker

    async def get_worker(self, worker_id: int) -> Worker | None:
        cursor = await self.conn.execute("SELECT * FROM workers WHERE id = ?", (worker_id,))
        row = await cursor.fetchone()
        return Worker.model_validate(dict(row)) if row else None

    async def list_all_workers(self) -> list[Worker]:
        cursor = await self.conn.execute("SELECT * FROM workers ORDER BY id")
        rows = await cursor.fetchall()
        return [Worker.model_validate(dict(row)) for row in rows]

    async def list_workers_by_status(self, status: WorkerStatus) -> list[Worker]:
        cursor = await self.conn.execute(
            "SELECT * FROM workers WHERE status = ? ORDER BY id", (status.value,)
        )
        rows = await cursor.fetchall()
        return [Worker.model_validate(dict(row)) for row in rows]

    async def average_worker_load(self) -> float:
        """Mean current load over workers that are not offline; 0.0 when there are none."""
        cursor = await self.conn.execute(
            "SELECT AVG(current_load) AS avg_load FROM workers WHERE status != 'offline'"
        )
        row = await cursor.fetchone()
        if row is None or row["avg_load"] is None:
            return 0.0
        return float(row["avg_load"])

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    async def log_event(
        self,
        event_type: str,
        item_id: int | None = None,
        worker_id: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        await self.conn.execute(
            """
            INSERT INTO event_log (event_type, item_id, worker_id, details)
            VALUES (?, ?, ?, ?)
            """,
            (event_type, item_id, worker_id, json.dumps(details) if details else None),
        )

    async def get_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        if event_type:
            cursor = await self.conn.execute(
                "SELECT * FROM event_log WHERE event_type = ? ORDER BY id", (event_type,)
            )
        else:
            cursor = await self.conn.execute("SELECT * FROM event_log ORDER BY id")
        rows = await cursor.fetchall()
        events = []
        for row in rows:
            d = dict(row)
            d["details"] = json.loads(d["details"]) if d["details"] else {}
            events.append(d)
        return events
