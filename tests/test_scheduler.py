import asyncio
from datetime import timedelta

import pytest

from updown.context import AppContext
from updown.exceptions import NotFoundError
from updown.services.scheduler import JOB_ID, OVERLAPPING_TICKS, start_scheduler, stop_scheduler


def with_settings(ctx, **overrides) -> AppContext:
    return AppContext(settings=ctx.settings.model_copy(update=overrides), db=ctx.db, http=ctx.http)


@pytest.mark.asyncio
async def test_disabled_scheduler_is_not_started(ctx):
    assert start_scheduler(ctx) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("skip_overlap, max_instances", [(False, OVERLAPPING_TICKS), (True, 1)])
async def test_job_uses_configured_interval(ctx, skip_overlap, max_instances):
    scheduler = start_scheduler(with_settings(
        ctx, SCHEDULER_ENABLED=True, PROBE_INTERVAL_SECONDS=120, SCHEDULER_SKIP_OVERLAP=skip_overlap,
    ))
    try:
        job = scheduler.get_job(JOB_ID)
        assert job.trigger.interval == timedelta(seconds=120)
        assert job.max_instances == max_instances
    finally:
        stop_scheduler(scheduler)
    assert not scheduler.running


@pytest.mark.asyncio
async def test_first_tick_runs_immediately(ctx, fake_sites):
    user = await ctx.db.create_user()
    site = await ctx.db.create_site(user.id, "https://a.test")
    fake_sites.outcomes["a.test"] = 200

    scheduler = start_scheduler(with_settings(ctx, SCHEDULER_ENABLED=True))
    try:
        for _ in range(100):
            try:
                latest = await ctx.db.latest_response_for_site(site.id)
                break
            except NotFoundError:
                await asyncio.sleep(0.05)
        else:
            pytest.fail("scheduler never ran a tick")
    finally:
        stop_scheduler(scheduler)

    assert latest.status_code == 200


def test_stop_tolerates_missing_scheduler():
    stop_scheduler(None)
