from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from updown.models import Response


class ResponseRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(self, site_id: int, status_code: int, now: float) -> Response:
        """
        Insert-or-touch in one statement. A repeated (status_code, site_id)
        pair only moves updated_at; id and created_at are kept.
        """
        stmt = (
            sqlite_insert(Response)
            .values(site_id=site_id, status_code=status_code, created_at=now, updated_at=now)
            .on_conflict_do_update(
                index_elements=[Response.status_code, Response.site_id],
                set_={"updated_at": now},
            )
            .returning(Response)
        )
        rows = await self.db.scalars(stmt, execution_options={"populate_existing": True})
        return rows.one()

    async def latest_for_site(self, site_id: int) -> Optional[Response]:
        rows = await self.db.execute(
            select(Response)
            .where(Response.site_id == site_id)
            .order_by(Response.updated_at.desc(), Response.id.desc())
            .limit(1)
        )
        return rows.scalar_one_or_none()

    async def for_site(self, site_id: int) -> List[Response]:
        rows = await self.db.execute(
            select(Response)
            .where(Response.site_id == site_id)
            .order_by(Response.updated_at.desc(), Response.id.desc())
        )
        return list(rows.scalars().all())
