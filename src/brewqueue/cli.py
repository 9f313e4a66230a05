from __future__ import annotations

import asyncio
import signal
from typing import Any, Awaitable, Callable, TypeVar

import click

from brewqueue import __version__
from brewqueue.errors import BrewQueueError
from brewqueue.models.work_item import CallerTier, ItemStatus, WorkItem
from brewqueue.models.worker import Worker, WorkerStatus
from brewqueue.utils.config import get_config
from brewqueue.utils.logger import setup_logging

T = TypeVar("T")


def _run_with_queue(db_path: str, action: Callable[[Any], Awaitable[T]]) -> T:
    """Open the database, hand a WorkQueue to ``action``, and close again."""
    from brewqueue.db.database import Database
    from brewqueue.services.work_queue import WorkQueue

    async def _run() -> T:
        db = Database(db_path)
        await db.initialize()
        try:
            return await action(WorkQueue(db))
        finally:
            await db.close()

    try:
        return asyncio.run(_run())
    except BrewQueueError as exc:
        raise click.ClickException(str(exc)) from exc


def _format_item(item: WorkItem) -> str:
    flag = " EMERGENCY" if item.emergency else ""
    worker = f" worker={item.assigned_worker_id}" if item.assigned_worker_id else ""
    return (
        f"#{item.id} {item.label} x{item.quantity} [{item.status.value}] "
        f"score={item.priority_score:.2f} skips={item.skip_count} "
        f"tier={item.tier.value}{worker}{flag}"
    )


def _format_worker(worker: Worker) -> str:
    return (
        f"#{worker.id} {worker.name} [{worker.status.value}] "
        f"load={worker.current_load} served={worker.total_completed}"
    )


@click.group()
@click.version_option(version=__version__, prog_name="brewqueue")
@click.option(
    "--db-path",
    default=None,
    help="Path for the SQLite database file (default: $BREWQUEUE_DB_PATH or data/brewqueue.db).",
)
@click.pass_context
def main(ctx: click.Context, db_path: str | None) -> None:
    """brewqueue: dynamic priority queue for drink orders."""
    config = get_config()
    setup_logging(config.log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["db_path"] = db_path or str(config.db_path)


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize the brewqueue database."""
    db_path = ctx.obj["db_path"]

    async def _noop(queue: Any) -> None:
        return None

    _run_with_queue(db_path, _noop)
    click.echo(f"Database initialized at {db_path}")


@main.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the recalculation, assignment and workload-decay loops until interrupted."""
    from brewqueue.db.database import Database
    from brewqueue.services.scheduler import QueueScheduler

    config = ctx.obj["config"]
    db_path = ctx.obj["db_path"]

    async def _run() -> None:
        db = Database(db_path)
        await db.initialize()
        scheduler = QueueScheduler(
            db,
            recalc_interval=config.recalc_interval,
            assign_interval=config.assign_interval,
            decay_interval=config.decay_interval,
        )
        await scheduler.start()

        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        try:
            await stop_event.wait()
        finally:
            await scheduler.stop()
            await db.close()

    click.echo("Starting brewqueue scheduler...")
    asyncio.run(_run())


@main.command()
@click.pass_context
def tick(ctx: click.Context) -> None:
    """Run one recalculation, assignment and decay tick, in that order."""
    from brewqueue.services.scheduler import QueueScheduler

    async def _tick(queue: Any) -> dict[str, int]:
        return await QueueScheduler(queue.db, engine=queue.engine).tick_all()

    counts = _run_with_queue(ctx.obj["db_path"], _tick)
    click.echo(
        f"rescored={counts['rescored']} assigned={counts['assigned']} "
        f"completed={counts['completed']}"
    )


@main.command()
@click.argument("worker_id", type=int)
@click.pass_context
def assign(ctx: click.Context, worker_id: int) -> None:
    """Assign the next pending item to WORKER_ID."""
    item = _run_with_queue(ctx.obj["db_path"], lambda q: q.assign_next(worker_id))
    if item is None:
        click.echo("No assignment made")
    else:
        click.echo(_format_item(item))


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show pending-queue statistics."""
    result = _run_with_queue(ctx.obj["db_path"], lambda q: q.queue_stats())
    click.echo(
        f"pending={result.total_pending} avg_wait={result.avg_wait_minutes}m "
        f"max_wait={result.max_wait_minutes}m emergencies={result.emergency_count}"
    )


@main.command()
def version() -> None:
    """Print the version and exit."""
    click.echo(f"brewqueue {__version__}")


# ----------------------------------------------------------------------
# Workers
# ----------------------------------------------------------------------


@main.group()
def worker() -> None:
    """Manage baristas."""


@worker.command("add")
@click.argument("name")
@click.pass_context
def worker_add(ctx: click.Context, name: str) -> None:
    """Register a barista called NAME."""
    created = _run_with_queue(ctx.obj["db_path"], lambda q: q.register_worker(name))
    click.echo(_format_worker(created))


@worker.command("list")
@click.pass_context
def worker_list(ctx: click.Context) -> None:
    """List all baristas."""
    for w in _run_with_queue(ctx.obj["db_path"], lambda q: q.list_workers()):
        click.echo(_format_worker(w))


@worker.command("status")
@click.argument("worker_id", type=int)
@click.argument(
    "status",
    type=click.Choice([s.value for s in WorkerStatus], case_sensitive=False),
)
@click.pass_context
def worker_status(ctx: click.Context, worker_id: int, status: str) -> None:
    """Set WORKER_ID's STATUS."""
    updated = _run_with_queue(
        ctx.obj["db_path"],
        lambda q: q.set_worker_status(worker_id, WorkerStatus(status.lower())),
    )
    click.echo(_format_worker(updated))


# ----------------------------------------------------------------------
# Work items
# ----------------------------------------------------------------------


@main.group()
def item() -> None:
    """Manage drink orders."""


@item.command("add")
@click.argument("label")
@click.option(
    "--duration",
    "base_duration",
    type=click.IntRange(min=1),
    required=True,
    help="Preparation minutes per unit.",
)
@click.option("--quantity", type=click.IntRange(min=1), default=1, show_default=True)
@click.option(
    "--tier",
    type=click.Choice([t.value for t in CallerTier], case_sensitive=False),
    default=CallerTier.NONE.value,
    show_default=True,
    help="Loyalty tier of the customer.",
)
@click.pass_context
def item_add(
    ctx: click.Context, label: str, base_duration: int, quantity: int, tier: str
) -> None:
    """Queue a new order for LABEL."""
    created = _run_with_queue(
        ctx.obj["db_path"],
        lambda q: q.create_item(label, base_duration, quantity, CallerTier(tier.lower())),
    )
    click.echo(_format_item(created))


@item.command("list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in ItemStatus], case_sensitive=False),
    default=None,
    help="Only show items in this status (pending items are listed by priority).",
)
@click.pass_context
def item_list(ctx: click.Context, status: str | None) -> None:
    """List orders."""
    wanted = ItemStatus(status.lower()) if status else None
    for it in _run_with_queue(ctx.obj["db_path"], lambda q: q.list_items(wanted)):
        click.echo(_format_item(it))


@item.command("complete")
@click.argument("item_id", type=int)
@click.pass_context
def item_complete(ctx: click.Context, item_id: int) -> None:
    """Mark ITEM_ID as completed and free its barista."""
    done = _run_with_queue(ctx.obj["db_path"], lambda q: q.complete_item(item_id))
    click.echo(_format_item(done))


@item.command("cancel")
@click.argument("item_id", type=int)
@click.pass_context
def item_cancel(ctx: click.Context, item_id: int) -> None:
    """Cancel pending ITEM_ID."""
    cancelled = _run_with_queue(ctx.obj["db_path"], lambda q: q.cancel_item(item_id))
    click.echo(_format_item(cancelled))


if __name__ == "__main__":
    main()
