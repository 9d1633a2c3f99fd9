from sqlalchemy import (
    Column, Integer, Float, Text,
    ForeignKey, Index, UniqueConstraint,
)
from updown.database import Base

# Mirrors the schema built by updown/migrations/*.sql; the ORM never creates tables.


class User(Base):
    __tablename__ = "users"

    id          = Column(Integer, primary_key=True)
    login_code  = Column(Text, nullable=False, unique=True)
    created_at  = Column(Float, nullable=False)     # epoch seconds
    updated_at  = Column(Float, nullable=False)


class Login(Base):
    __tablename__ = "logins"

    id          = Column(Integer, primary_key=True)
    user_id     = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at  = Column(Float, nullable=False)

    __table_args__ = (
        Index("ix_logins_user_id", "user_id"),
    )


class Site(Base):
    __tablename__ = "sites"

    id          = Column(Integer, primary_key=True)
    user_id     = Column(Integer, ForeignKey("users.id"), nullable=False)
    url         = Column(Text, nullable=False)
    name        = Column(Text, nullable=True)
    created_at  = Column(Float, nullable=False)
    updated_at  = Column(Float, nullable=False)

    __table_args__ = (
        Index("unique_url_user_id", "url", "user_id", unique=True),
    )


class Response(Base):
    """One row per distinct status code ever observed for a site."""
    __tablename__ = "responses"

    id          = Column(Integer, primary_key=True)
    site_id     = Column(Integer, ForeignKey("sites.id"), nullable=False)
    status_code = Column(Integer, nullable=False)   # 0 = probe failed
    created_at  = Column(Float, nullable=False)
    updated_at  = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("status_code", "site_id"),
    )
