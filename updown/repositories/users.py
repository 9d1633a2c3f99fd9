from __future__ import annotations
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from updown.models import Login, User


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, login_code: str, now: float) -> User:
        user = User(login_code=login_code, created_at=now, updated_at=now)
        self.db.add(user)
        await self.db.flush()
        return user

    async def get_by_id(self, user_id: int) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_by_login_code(self, login_code: str) -> Optional[User]:
        rows = await self.db.execute(
            select(User).where(User.login_code == login_code).limit(1)
        )
        return rows.scalar_one_or_none()

    async def add_login(self, user_id: int, now: float) -> Login:
        login = Login(user_id=user_id, created_at=now)
        self.db.add(login)
        await self.db.flush()
        return login

    async def login_count(self, user_id: int) -> int:
        return (
            await self.db.execute(
                select(func.count(Login.id)).where(Login.user_id == user_id)
            )
        ).scalar_one()
