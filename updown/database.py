from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
import structlog
from updown.config import Settings

log = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings, enforce_foreign_keys: bool = True) -> AsyncEngine:
    """
    Bounded pool over one SQLite file: callers beyond DB_POOL_SIZE queue for
    up to DB_POOL_TIMEOUT seconds, writers wait on the busy timeout.
    """
    engine = create_async_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=0,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        echo=False,
    )
    busy_ms = int(settings.DB_BUSY_TIMEOUT_SECONDS * 1000)

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_connection(dbapi_connection, connection_record):
        # Driver autocommit; transactions are opened by the "begin" hook so DDL is transactional too.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_ms}")
        cursor.execute(f"PRAGMA foreign_keys={'ON' if enforce_foreign_keys else 'OFF'}")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    log.info(
        "database.engine.created",
        pool_size=settings.DB_POOL_SIZE,
        foreign_keys=enforce_foreign_keys,
    )
    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
