"""Command line entry point: ``cadence worker|cleanup|stats|migrate``."""

import argparse
import asyncio
import logging
import signal
from dataclasses import asdict

from cadence.app import create_application
from cadence.config import Settings
from cadence.db.migrate import upgrade

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings) -> None:
    """Run the scheduler worker until SIGINT or SIGTERM."""
    app = create_application(settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await app.worker.start()
    try:
        await stop_event.wait()
    finally:
        await app.worker.stop()
        await app.close()


async def run_cleanup(settings: Settings, older_than_days: int | None) -> None:
    app = create_application(settings)
    try:
        result = await app.worker.cleanup(older_than_days)
        print(
            f"Deleted {result.tasks_deleted} completed tasks and "
            f"{result.executions_deleted} execution records"
        )
    finally:
        await app.close()


async def run_stats(settings: Settings) -> None:
    app = create_application(settings)
    try:
        counts = await app.worker.get_stats()
        for name, value in asdict(counts).items():
            print(f"{name}: {value}")
    finally:
        await app.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cadence", description="Scheduled task engine")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("worker", help="Run the scheduler worker")

    p = subparsers.add_parser("cleanup", help="Delete old completed tasks and trim history")
    p.add_argument(
        "--older-than-days",
        type=int,
        default=None,
        help="Retention window in days (defaults to CADENCE_RETENTION_DAYS)",
    )

    subparsers.add_parser("stats", help="Print task counts")

    p = subparsers.add_parser("migrate", help="Upgrade the database schema")
    p.add_argument("--revision", default="head", help="Target revision")

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "worker":
        asyncio.run(run_worker(settings))
    elif args.command == "cleanup":
        asyncio.run(run_cleanup(settings, args.older_than_days))
    elif args.command == "stats":
        asyncio.run(run_stats(settings))
    elif args.command == "migrate":
        upgrade(args.revision, settings.database_url)


if __name__ == "__main__":
    main()
