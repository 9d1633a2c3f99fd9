from __future__ import annotations

from datetime import datetime, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from updown.context import AppContext
from updown.services.monitor import run_tick

log = structlog.get_logger(__name__)

JOB_ID = "probe_sites"
# Ticks may overlap unless SCHEDULER_SKIP_OVERLAP is set; this caps a runaway backlog.
OVERLAPPING_TICKS = 10


async def _scheduled_tick(ctx: AppContext) -> None:
    try:
        report = await run_tick(ctx)
        log.info(
            "scheduler.tick.done",
            sites=report.sites_checked,
            stored=report.responses_stored,
            errors=len(report.errors),
        )
    except Exception as exc:
        log.error("scheduler.tick.failed", error=str(exc))


def start_scheduler(ctx: AppContext) -> AsyncIOScheduler | None:
    """Must be called with the event loop running. The first tick fires immediately."""
    settings = ctx.settings
    if not settings.SCHEDULER_ENABLED:
        log.info("scheduler.disabled")
        return None

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _scheduled_tick,
        trigger=IntervalTrigger(seconds=settings.PROBE_INTERVAL_SECONDS),
        args=[ctx],
        id=JOB_ID,
        replace_existing=True,
        max_instances=1 if settings.SCHEDULER_SKIP_OVERLAP else OVERLAPPING_TICKS,
        next_run_time=datetime.now(timezone.utc),
    )
    scheduler.start()
    log.info(
        "scheduler.started",
        interval_seconds=settings.PROBE_INTERVAL_SECONDS,
        skip_overlap=settings.SCHEDULER_SKIP_OVERLAP,
    )
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("scheduler.stopped")
