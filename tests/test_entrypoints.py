import asyncio
from datetime import datetime, timezone

import pytest

from updown import entrypoints
from updown.migrator import open_migrator
from updown.schemas import TickReport


@pytest.fixture
def env_settings(settings, monkeypatch):
    monkeypatch.setattr(entrypoints, "get_settings", lambda: settings)
    return settings


def test_migrate_then_rollback_exit_codes(env_settings):
    assert entrypoints.migrate_main() == 0
    assert entrypoints.migrate_main() == 0
    assert entrypoints.rollback_main() == 0
    # the only reversible migration is already rolled back
    assert entrypoints.rollback_main() == 1


def test_rollback_on_fresh_database_fails(env_settings):
    assert entrypoints.rollback_main() == 1


@pytest.mark.asyncio
async def test_watch_migrates_and_ticks_until_stopped(settings, monkeypatch):
    stop = asyncio.Event()
    seen = []

    async def fake_tick(ctx):
        seen.append(ctx.settings.SCHEDULER_ENABLED)
        stop.set()
        return TickReport(
            started_at=datetime.now(timezone.utc), duration_ms=0, sites_checked=0,
            responses_stored=0, probe_failures=0, errors=[],
        )

    monkeypatch.setattr("updown.services.scheduler.run_tick", fake_tick)
    await asyncio.wait_for(entrypoints.watch(settings, stop), timeout=5)

    assert seen == [True]
    async with open_migrator(settings) as migrator:
        assert all(s.applied for s in await migrator.status())
