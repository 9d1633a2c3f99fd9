"""
Storage gateway: the only component that talks to the database.

Every public coroutine runs in its own transaction and stamps writes with the
gateway's clock. SQLAlchemy errors never leak out; callers see NotFoundError,
ConstraintViolationError (bad input, nothing written) or StorageError
(transient, safe to retry).
"""
from __future__ import annotations

import math
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from updown.config import Settings
from updown.database import create_engine, create_sessionmaker
from updown.exceptions import (
    ConstraintViolationError, EmptyUrlError, NotFoundError, StorageError,
)
from updown.models import Login, Response, Site, User
from updown.repositories.responses import ResponseRepository
from updown.repositories.sites import SiteRepository
from updown.repositories.users import UserRepository

log = structlog.get_logger(__name__)

LOGIN_CODE_BYTES = 16
LOGIN_CODE_ATTEMPTS = 5


def new_login_code() -> str:
    return secrets.token_urlsafe(LOGIN_CODE_BYTES)


class Database:
    def __init__(self, engine: AsyncEngine, clock: Callable[[], float] = time.time):
        self.engine = engine
        self.SessionLocal = create_sessionmaker(engine)
        self._clock = clock
        self._last_stamp = 0.0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        enforce_foreign_keys: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> "Database":
        return cls(create_engine(settings, enforce_foreign_keys), clock=clock)

    async def dispose(self) -> None:
        await self.engine.dispose()
        log.info("database.closed")

    def now(self) -> float:
        """Write timestamp; strictly increasing even if the wall clock stalls or steps back."""
        stamp = self._clock()
        if stamp <= self._last_stamp:
            stamp = math.nextafter(self._last_stamp, math.inf)
        self._last_stamp = stamp
        return stamp

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.SessionLocal() as session:
            try:
                async with session.begin():
                    yield session
            except IntegrityError as exc:
                raise ConstraintViolationError(
                    "Constraint violated", {"reason": str(exc.orig)}
                ) from exc
            except SQLAlchemyError as exc:
                log.warning("database.error", error=str(exc))
                raise StorageError(
                    "Storage temporarily unavailable", {"reason": type(exc).__name__}
                ) from exc

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    # ── Users & logins ───────────────────────────────────────────────────────

    async def create_user(self) -> User:
        for attempt in range(1, LOGIN_CODE_ATTEMPTS + 1):
            try:
                async with self.transaction() as db:
                    user = await UserRepository(db).create(new_login_code(), self.now())
            except ConstraintViolationError:
                log.warning("user.login_code.collision", attempt=attempt)
                continue
            log.info("user.created", user_id=user.id)
            return user
        raise StorageError(
            "Could not generate a unique login code", {"attempts": LOGIN_CODE_ATTEMPTS}
        )

    async def user_by_id(self, user_id: int) -> User:
        async with self.transaction() as db:
            user = await UserRepository(db).get_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return user

    async def user_by_login_code(self, login_code: str) -> User:
        async with self.transaction() as db:
            user = await UserRepository(db).get_by_login_code(login_code)
        if user is None:
            raise NotFoundError("No user has that login code")
        return user

    async def create_login(self, user_id: int) -> Login:
        async with self.transaction() as db:
            login = await UserRepository(db).add_login(user_id, self.now())
        log.info("login.created", user_id=user_id)
        return login

    async def login_count(self, user_id: int) -> int:
        async with self.transaction() as db:
            return await UserRepository(db).login_count(user_id)

    # ── Sites ────────────────────────────────────────────────────────────────

    async def create_site(self, user_id: int, url: str, name: Optional[str] = None) -> Site:
        url = (url or "").strip()
        if not url:
            raise EmptyUrlError("Site url must not be empty", {"user_id": user_id})
        name = (name or "").strip() or None
        async with self.transaction() as db:
            site = await SiteRepository(db).create(user_id, url, name, self.now())
        log.info("site.created", site_id=site.id, user_id=user_id, url=url)
        return site

    async def sites(self) -> List[Site]:
        async with self.transaction() as db:
            return await SiteRepository(db).all()

    async def sites_by_user(self, user_id: int) -> List[Site]:
        async with self.transaction() as db:
            return await SiteRepository(db).by_user(user_id)

    # ── Responses ────────────────────────────────────────────────────────────

    async def upsert_response(self, site_id: int, status_code: int) -> Response:
        async with self.transaction() as db:
            return await ResponseRepository(db).upsert(site_id, status_code, self.now())

    async def latest_response_for_site(self, site_id: int) -> Response:
        async with self.transaction() as db:
            response = await ResponseRepository(db).latest_for_site(site_id)
        if response is None:
            raise NotFoundError(f"No responses for site {site_id}", {"site_id": site_id})
        return response

    async def responses_for_site(self, site_id: int) -> List[Response]:
        async with self.transaction() as db:
            return await ResponseRepository(db).for_site(site_id)
