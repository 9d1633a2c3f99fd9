from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from updown.models import Site


class SiteRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_id: int, url: str, name: Optional[str], now: float) -> Site:
        site = Site(user_id=user_id, url=url, name=name, created_at=now, updated_at=now)
        self.db.add(site)
        await self.db.flush()
        return site

    async def all(self) -> List[Site]:
        rows = await self.db.execute(select(Site).order_by(Site.id))
        return list(rows.scalars().all())

    async def by_user(self, user_id: int) -> List[Site]:
        rows = await self.db.execute(
            select(Site).where(Site.user_id == user_id).order_by(Site.id)
        )
        return list(rows.scalars().all())
