from __future__ import annotations
from functools import lru_cache
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────────────────────────
    APP_NAME: str = "updown"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # ── HTTP service ─────────────────────────────────────────────────────────
    HOST: str = "127.0.0.1"
    PORT: int = 9001
    API_KEY: str = ""  # empty disables the /api/v1 surface
    CORS_ORIGINS: List[str] = ["http://localhost:9001"]

    # ── Database ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///updown.db"
    DB_POOL_SIZE: int = 5
    DB_POOL_TIMEOUT: float = 30.0        # seconds a caller queues for a connection
    DB_BUSY_TIMEOUT_SECONDS: float = 30.0

    # ── Prober ───────────────────────────────────────────────────────────────
    PROBE_TIMEOUT: float = 10.0
    PROBE_CONCURRENCY: int = 20
    PROBE_USER_AGENT: str = "updown-probe/0.1"

    # ── Scheduler ────────────────────────────────────────────────────────────
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_SKIP_OVERLAP: bool = False
    PROBE_INTERVAL_SECONDS: int = 300
    STORE_RETRY_ATTEMPTS: int = 3

    # ── Rate limiting ────────────────────────────────────────────────────────
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # ── Trusted proxies ──────────────────────────────────────────────────────
    # Only set behind a proxy that overwrites these; clients can forge them otherwise.
    TRUSTED_PROXY_HEADERS: List[str] = []

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        # the pooled engine needs a file; every :memory: connection is its own database
        if ":memory:" in v or v.rstrip("/") in ("sqlite:", "sqlite+aiosqlite:"):
            raise ValueError("DATABASE_URL must point at a database file")
        if v.startswith("sqlite+aiosqlite://"):
            return v
        if v.startswith("sqlite:///"):
            return "sqlite+aiosqlite" + v[len("sqlite"):]
        if v.startswith("sqlite://"):
            # sqlite://updown.db is a path relative to the working directory
            return "sqlite+aiosqlite:///" + v[len("sqlite://"):]
        raise ValueError("DATABASE_URL must be a sqlite URL")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v

    @field_validator("PROBE_INTERVAL_SECONDS", "DB_POOL_SIZE", "PROBE_CONCURRENCY", "STORE_RETRY_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
