from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

import httpx
import structlog

from updown.config import Settings
from updown.gateway import Database
from updown.services.prober import build_client

log = structlog.get_logger(__name__)


@dataclass
class AppContext:
    """Everything a running process shares: built once at startup, closed at shutdown."""
    settings: Settings
    db: Database
    http: httpx.AsyncClient

    @classmethod
    def create(cls, settings: Settings, clock: Callable[[], float] = time.time) -> "AppContext":
        return cls(
            settings=settings,
            db=Database.from_settings(settings, clock=clock),
            http=build_client(settings),
        )

    async def close(self) -> None:
        await self.http.aclose()
        await self.db.dispose()


@asynccontextmanager
async def open_context(settings: Settings) -> AsyncIterator[AppContext]:
    ctx = AppContext.create(settings)
    try:
        yield ctx
    finally:
        await ctx.close()
