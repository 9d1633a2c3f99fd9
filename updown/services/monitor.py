from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import List

import structlog
from tenacity import (
    AsyncRetrying, stop_after_attempt, wait_exponential,
    retry_if_exception_type,
)

from updown.context import AppContext
from updown.exceptions import AppError, StorageError
from updown.models import Response, Site
from updown.schemas import ProbeResult, SiteCheck, TickReport
from updown.services.prober import PROBE_FAILED, probe

log = structlog.get_logger(__name__)


async def record_response(ctx: AppContext, site_id: int, status_code: int) -> Response:
    """Upsert one observation, retrying briefly while the store reports a transient failure."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(StorageError),
        stop=stop_after_attempt(ctx.settings.STORE_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    ):
        with attempt:
            response = await ctx.db.upsert_response(site_id, status_code)
    return response


async def check_site(ctx: AppContext, site: Site, sem: asyncio.Semaphore) -> SiteCheck:
    async with sem:
        try:
            result = await probe(ctx.http, site.url, ctx.settings.PROBE_TIMEOUT)
        except Exception as exc:
            # still a failed observation, so it is stored like one
            log.error("monitor.probe.crashed", site_id=site.id, url=site.url, error=repr(exc))
            result = ProbeResult(
                url=site.url, status_code=PROBE_FAILED, duration_ms=0, error=repr(exc),
            )

    try:
        await record_response(ctx, site.id, result.status_code)
    except AppError as exc:
        log.error("monitor.store.failed", site_id=site.id, status=result.status_code, error=exc.detail)
        return SiteCheck(
            site_id=site.id, url=site.url, status_code=result.status_code,
            stored=False, error=f"store failed: {exc.detail}",
        )

    return SiteCheck(
        site_id=site.id, url=site.url, status_code=result.status_code,
        stored=True, error=result.error,
    )


async def run_tick(ctx: AppContext) -> TickReport:
    """
    Probe every site once. Each site is its own task: a failed probe or a
    failed write is logged against that site and the others carry on.
    """
    started_at = datetime.now(timezone.utc)
    t0 = time.monotonic()

    try:
        sites = await ctx.db.sites()
    except AppError as exc:
        log.error("monitor.tick.sites_failed", error=exc.detail)
        return TickReport(
            started_at=started_at, duration_ms=int((time.monotonic() - t0) * 1000),
            sites_checked=0, responses_stored=0, probe_failures=0,
            errors=[f"listing sites failed: {exc.detail}"],
        )

    sem = asyncio.Semaphore(ctx.settings.PROBE_CONCURRENCY)
    outcomes = await asyncio.gather(
        *[check_site(ctx, site, sem) for site in sites], return_exceptions=True
    )

    results: List[SiteCheck] = []
    errors: List[str] = []
    for site, outcome in zip(sites, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            log.error("monitor.site.crashed", site_id=site.id, error=repr(outcome))
            outcome = SiteCheck(site_id=site.id, url=site.url, error=repr(outcome))
        results.append(outcome)
        if outcome.error:
            errors.append(f"site {site.id}: {outcome.error}")

    report = TickReport(
        started_at=started_at,
        duration_ms=int((time.monotonic() - t0) * 1000),
        sites_checked=len(sites),
        responses_stored=sum(1 for r in results if r.stored),
        probe_failures=sum(1 for r in results if r.status_code == PROBE_FAILED),
        errors=errors,
        results=results,
    )
    log.info(
        "monitor.tick.done",
        sites=report.sites_checked,
        stored=report.responses_stored,
        probe_failures=report.probe_failures,
        errors=len(errors),
        ms=report.duration_ms,
    )
    return report
