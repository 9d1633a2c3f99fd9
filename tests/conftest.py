import os

# Keep a developer's .env scheduler setting out of the test run
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from updown.config import Settings
from updown.context import AppContext
from updown.gateway import Database
from updown.main import create_app
from updown.migrator import open_migrator

TEST_API_KEY = "test-api-key-for-testing"


class FakeSites:
    """MockTransport handler: host -> status code, or an exception to raise."""

    def __init__(self):
        self.outcomes = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        outcome = self.outcomes.get(request.url.host)
        if outcome is None:
            raise httpx.ConnectError("no route to host", request=request)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'updown.db'}",
        API_KEY=TEST_API_KEY,
        ENVIRONMENT="development",
        SCHEDULER_ENABLED=False,
        STORE_RETRY_ATTEMPTS=1,
        PROBE_TIMEOUT=2.0,
    )


@pytest_asyncio.fixture
async def migrated(settings):
    async with open_migrator(settings) as migrator:
        await migrator.migrate()
    return settings


@pytest_asyncio.fixture
async def db(migrated):
    database = Database.from_settings(migrated)
    yield database
    await database.dispose()


@pytest.fixture
def fake_sites():
    return FakeSites()


@pytest_asyncio.fixture
async def ctx(migrated, db, fake_sites):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_sites), follow_redirects=True)
    yield AppContext(settings=migrated, db=db, http=http)
    await http.aclose()


@pytest_asyncio.fixture
async def client(ctx):
    # ASGITransport skips the lifespan, so wire the context in by hand
    app = create_app(ctx.settings)
    app.state.ctx = ctx
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-API-Key": TEST_API_KEY},
    ) as c:
        yield c
