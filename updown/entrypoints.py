"""
Process entry points, installed as console scripts:

    updown-migrate    apply pending migrations
    updown-rollback   undo the last reversible migration
    updown-watch      migrate, then probe all sites every PROBE_INTERVAL_SECONDS
    updown-serve      run the HTTP API (migrates and schedules in its lifespan)

Each returns a process exit status; schema failures exit 1.
"""
from __future__ import annotations

import asyncio
import signal
from typing import Optional

import structlog
import uvicorn

from updown.config import Settings, get_settings
from updown.context import open_context
from updown.exceptions import MigrationError, RollbackError
from updown.log_config import configure_logging
from updown.migrator import open_migrator
from updown.services.scheduler import start_scheduler, stop_scheduler

log = structlog.get_logger(__name__)


async def migrate(settings: Settings) -> list[int]:
    async with open_migrator(settings) as migrator:
        return await migrator.migrate()


async def rollback(settings: Settings) -> int:
    async with open_migrator(settings) as migrator:
        return (await migrator.rollback()).version


async def watch(settings: Settings, stop: Optional[asyncio.Event] = None) -> None:
    """Run the scheduler until ``stop`` is set (or SIGINT/SIGTERM arrives)."""
    await migrate(settings)
    settings = settings.model_copy(update={"SCHEDULER_ENABLED": True})
    stop = stop or asyncio.Event()

    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            pass  # no signal handlers off the main thread or on Windows

    async with open_context(settings) as ctx:
        scheduler = start_scheduler(ctx)
        try:
            await stop.wait()
        finally:
            stop_scheduler(scheduler)
            for sig in handled:
                loop.remove_signal_handler(sig)
    log.info("watch.stopped")


def _settings() -> Settings:
    settings = get_settings()
    configure_logging(settings.DEBUG)
    return settings


def migrate_main() -> int:
    settings = _settings()
    try:
        applied = asyncio.run(migrate(settings))
    except MigrationError as exc:
        log.error("migrate.failed", detail=exc.detail, context=exc.context)
        return 1
    log.info("migrate.done", applied=applied)
    return 0


def rollback_main() -> int:
    settings = _settings()
    try:
        version = asyncio.run(rollback(settings))
    except RollbackError as exc:
        log.error("rollback.failed", detail=exc.detail, context=exc.context)
        return 1
    log.info("rollback.done", version=version)
    return 0


def watch_main() -> int:
    settings = _settings()
    try:
        asyncio.run(watch(settings))
    except MigrationError as exc:
        log.error("watch.migrate.failed", detail=exc.detail, context=exc.context)
        return 1
    return 0


def serve_main() -> int:
    settings = _settings()
    uvicorn.run(
        "updown.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )
    return 0
