"""Operator command line for running jobs and inspecting the event store.

Cron-style runners invoke the periodic jobs one shot at a time::

    python -m hubmirror.cli run-job process-pending
    python -m hubmirror.cli run-job promote-retries
    python -m hubmirror.cli run-job repair-projections

"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses as dc
import os
import typing as typ

import msgspec

from hubmirror.bronze.state import ProcessState
from hubmirror.logging import configure_logging, get_logger, log_error

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = get_logger(__name__)

JOB_NAMES = ("process-pending", "promote-retries", "repair-projections")
_INSPECTABLE_STATES = (ProcessState.RETRY.value, ProcessState.DEAD.value)

type SessionFactory = async_sessionmaker[AsyncSession]


@dc.dataclass(frozen=True, slots=True)
class CommandContext:
    """Database handles shared by every subcommand."""

    engine: AsyncEngine
    session_factory: SessionFactory


def _print_json(value: object) -> None:
    print(msgspec.json.encode(value).decode("utf-8"))


async def _init_db(ctx: CommandContext, _args: argparse.Namespace) -> int:
    from hubmirror.bronze.storage import init_storage

    await init_storage(ctx.engine)
    print("hubmirror tables are up to date")
    return 0


async def _run_job(ctx: CommandContext, args: argparse.Namespace) -> int:
    from hubmirror.jobs.factory import (
        build_dispatcher,
        build_repair_job,
        build_retry_scheduler,
    )

    match args.job:
        case "process-pending":
            summary = await build_dispatcher(ctx.session_factory).process_pending()
            _print_json(summary)
        case "promote-retries":
            promoted = await build_retry_scheduler(ctx.session_factory).promote_due()
            _print_json({"promoted": promoted})
        case "repair-projections":
            repair = await build_repair_job(ctx.session_factory).repair_all()
            _print_json(repair)
        case _:  # pragma: no cover - argparse restricts choices
            msg = f"unknown job: {args.job}"
            raise ValueError(msg)
    return 0


async def _queue_health(ctx: CommandContext, _args: argparse.Namespace) -> int:
    from hubmirror.processing.admin import EventStoreAdmin

    health = await EventStoreAdmin(ctx.session_factory).queue_health()
    _print_json(health.to_dict())
    return 0


async def _list_events(ctx: CommandContext, args: argparse.Namespace) -> int:
    from hubmirror.processing.admin import EventStoreAdmin

    events = await EventStoreAdmin(ctx.session_factory).list_events(
        ProcessState(args.state), limit=args.limit
    )
    _print_json(events)
    return 0


async def _requeue(ctx: CommandContext, args: argparse.Namespace) -> int:
    from hubmirror.processing.admin import EventStoreAdmin

    result = await EventStoreAdmin(ctx.session_factory).requeue(args.delivery_id)
    _print_json({"deliveryId": result.delivery_id, "status": result.status})
    return 0 if result.requeued else 1


async def _requeue_dead(ctx: CommandContext, args: argparse.Namespace) -> int:
    from hubmirror.processing.admin import EventStoreAdmin

    requeued = await EventStoreAdmin(ctx.session_factory).requeue_dead(
        limit=args.limit
    )
    _print_json({"requeued": requeued})
    return 0


async def _dead_letter(ctx: CommandContext, args: argparse.Namespace) -> int:
    from hubmirror.processing.admin import EventStoreAdmin

    result = await EventStoreAdmin(ctx.session_factory).dead_letter(
        args.delivery_id, args.reason
    )
    _print_json({"deliveryId": result.delivery_id, "status": result.status})
    return 0 if result.dead_lettered else 1


_COMMANDS: dict[
    str,
    typ.Callable[[CommandContext, argparse.Namespace], typ.Awaitable[int]],
] = {
    "init-db": _init_db,
    "run-job": _run_job,
    "queue-health": _queue_health,
    "list-events": _list_events,
    "requeue": _requeue,
    "requeue-dead": _requeue_dead,
    "dead-letter": _dead_letter,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hubmirror-admin", description=__doc__)
    parser.add_argument(
        "--database-url",
        default=os.environ.get("HUBMIRROR_DATABASE_URL"),
        help="SQLAlchemy URL of the event store (default: $HUBMIRROR_DATABASE_URL)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("HUBMIRROR_LOG_LEVEL", "INFO"),
        help="Log level (default: $HUBMIRROR_LOG_LEVEL or INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create every table if absent")

    run_job = commands.add_parser("run-job", help="Run one periodic job once")
    run_job.add_argument("job", choices=JOB_NAMES)

    commands.add_parser("queue-health", help="Print counts per processing state")

    list_events = commands.add_parser(
        "list-events", help="List deliveries awaiting retry or dead-lettered"
    )
    list_events.add_argument(
        "--state", choices=_INSPECTABLE_STATES, default=ProcessState.DEAD.value
    )
    list_events.add_argument("--limit", type=int, default=50)

    requeue = commands.add_parser(
        "requeue", help="Move a dead-lettered delivery back to pending"
    )
    requeue.add_argument("delivery_id")

    requeue_dead = commands.add_parser(
        "requeue-dead", help="Move the oldest dead-lettered deliveries to pending"
    )
    requeue_dead.add_argument("--limit", type=int, default=100)

    dead_letter = commands.add_parser(
        "dead-letter", help="Give up on a pending or retrying delivery"
    )
    dead_letter.add_argument("delivery_id")
    dead_letter.add_argument("--reason", required=True)
    return parser


async def _dispatch(database_url: str, args: argparse.Namespace) -> int:
    from sqlalchemy.ext.asyncio import async_sessionmaker

    from hubmirror.jobs.factory import create_engine

    engine = create_engine(database_url)
    ctx = CommandContext(
        engine=engine,
        session_factory=async_sessionmaker(engine, expire_on_commit=False),
    )
    try:
        return await _COMMANDS[args.command](ctx, args)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Run a hubmirror admin command.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 when a requeue or dead-letter did not
        apply, 2 on configuration errors.

    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, force=True)

    if not args.database_url:
        log_error(
            logger,
            "No database URL: pass --database-url or set HUBMIRROR_DATABASE_URL",
        )
        return 2
    if args.command in {"list-events", "requeue-dead"} and args.limit < 1:
        parser.error("--limit must be positive")

    return asyncio.run(_dispatch(args.database_url, args))


if __name__ == "__main__":
    raise SystemExit(main())
