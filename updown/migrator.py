"""
Schema migrations.

Migrations are the ``<version>_<description>.up.sql`` files in
``updown/migrations``, each with an optional ``.down.sql`` reverse script.
Applied versions are recorded in the ``_migrations`` ledger together with a
checksum of the forward script, so an edited migration is caught instead of
silently diverging from the schema it built.

Every step (script plus ledger write) runs in one transaction on a
maintenance engine with foreign key enforcement off, which SQLite needs for
table rebuilds. ``PRAGMA foreign_key_check`` must come back clean before a
step commits.
"""
from __future__ import annotations

import hashlib
import sqlite3
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Sequence, Type

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from updown.config import Settings
from updown.database import create_engine
from updown.exceptions import AppError, MigrationError, RollbackError
from updown.schemas import MigrationStatus

log = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

LEDGER_DDL = """
create table if not exists _migrations (
    version integer not null primary key,
    description text not null,
    checksum text not null,
    installed_on real not null,
    execution_ms integer not null
)
"""


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    up: str
    down: Optional[str] = None

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.up.encode()).hexdigest()

    @property
    def reversible(self) -> bool:
        return self.down is not None


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    migrations: Dict[int, Migration] = {}
    for path in sorted(directory.glob("*.up.sql")):
        stem = path.name[: -len(".up.sql")]
        version, _, description = stem.partition("_")
        if not version.isdigit():
            raise MigrationError(f"Bad migration filename {path.name}")
        if int(version) in migrations:
            raise MigrationError(f"Duplicate migration version {version}")
        down_path = directory / f"{stem}.down.sql"
        migrations[int(version)] = Migration(
            version=int(version),
            description=description.replace("_", " "),
            up=path.read_text(),
            down=down_path.read_text() if down_path.exists() else None,
        )
    return [migrations[v] for v in sorted(migrations)]


def split_statements(script: str) -> List[str]:
    """Split a script on top-level semicolons; the driver runs one statement per call."""
    script = "\n".join(
        line for line in script.splitlines() if not line.lstrip().startswith("--")
    )
    statements, pending = [], ""
    for piece in script.split(";"):
        pending += piece + ";"
        if sqlite3.complete_statement(pending):
            statement = pending.strip().rstrip(";").strip()
            if statement:
                statements.append(statement)
            pending = ""
    if pending.strip(" \n\t;"):
        raise ValueError("Unterminated statement in migration script")
    return statements


class Migrator:
    def __init__(self, engine: AsyncEngine, migrations: Optional[Sequence[Migration]] = None):
        self.engine = engine
        if migrations is None:
            migrations = load_migrations()
        self.migrations = sorted(migrations, key=lambda m: m.version)

    def last_reversible(self) -> Optional[Migration]:
        """Rollback target: the last defined migration with a down script, applied or not."""
        reversible = [m for m in self.migrations if m.reversible]
        return reversible[-1] if reversible else None

    async def _applied(self, conn: AsyncConnection) -> Dict[int, dict]:
        rows = await conn.execute(
            text("select version, description, checksum, installed_on from _migrations")
        )
        return {row.version: row._asdict() for row in rows}

    async def _check_foreign_keys(self, conn: AsyncConnection, error: Type[AppError]) -> None:
        violations = (await conn.exec_driver_sql("PRAGMA foreign_key_check")).fetchall()
        if violations:
            raise error(
                "Foreign key check failed",
                {"violations": [tuple(v) for v in violations[:10]]},
            )

    def _validate(self, applied: Dict[int, dict]) -> None:
        known = {m.version: m for m in self.migrations}
        for version, row in applied.items():
            migration = known.get(version)
            if migration is None:
                raise MigrationError(
                    f"Migration {version} was applied but is missing from this build",
                    {"version": version},
                )
            if row["checksum"] != migration.checksum:
                raise MigrationError(
                    f"Migration {version} was applied but has since been modified",
                    {"version": version},
                )

    # ── Forward ──────────────────────────────────────────────────────────────

    async def migrate(self) -> List[int]:
        """Apply every pending migration in order. Returns the versions applied."""
        try:
            async with self.engine.begin() as conn:
                await conn.exec_driver_sql(LEDGER_DDL)
                applied = await self._applied(conn)
        except SQLAlchemyError as exc:
            log.error("migration.ledger.failed", error=str(exc))
            raise MigrationError("Could not read the migration ledger") from exc

        self._validate(applied)

        done = []
        for migration in self.migrations:
            if migration.version in applied:
                continue
            await self._apply(migration)
            done.append(migration.version)

        log.info("migration.complete", applied=len(done), total=len(self.migrations))
        return done

    async def _apply(self, migration: Migration) -> None:
        t0 = time.monotonic()
        try:
            async with self.engine.begin() as conn:
                for statement in split_statements(migration.up):
                    await conn.exec_driver_sql(statement)
                await self._check_foreign_keys(conn, MigrationError)
                await conn.execute(
                    text(
                        "insert into _migrations "
                        "(version, description, checksum, installed_on, execution_ms) "
                        "values (:version, :description, :checksum, :installed_on, :execution_ms)"
                    ),
                    {
                        "version": migration.version,
                        "description": migration.description,
                        "checksum": migration.checksum,
                        "installed_on": time.time(),
                        "execution_ms": int((time.monotonic() - t0) * 1000),
                    },
                )
        except (SQLAlchemyError, ValueError) as exc:
            log.error("migration.failed", version=migration.version, error=str(exc))
            raise MigrationError(
                f"Migration {migration.version} failed",
                {"version": migration.version, "reason": str(exc)},
            ) from exc
        log.info(
            "migration.applied",
            version=migration.version,
            description=migration.description,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

    # ── Reverse ──────────────────────────────────────────────────────────────

    async def rollback(self) -> Migration:
        """
        Undo the last reversible migration: run its down script and drop its
        ledger row in a single transaction. Fails without touching anything
        when that migration is not currently applied.
        """
        target = self.last_reversible()
        if target is None:
            raise RollbackError("No reversible migration is defined")

        try:
            async with self.engine.begin() as conn:
                await conn.exec_driver_sql(LEDGER_DDL)
                found = await conn.execute(
                    text("select version from _migrations where version = :version"),
                    {"version": target.version},
                )
                if found.first() is None:
                    raise RollbackError(
                        f"Migration {target.version} is not applied",
                        {"version": target.version},
                    )
                for statement in split_statements(target.down):
                    await conn.exec_driver_sql(statement)
                await self._check_foreign_keys(conn, RollbackError)
                await conn.execute(
                    text("delete from _migrations where version = :version"),
                    {"version": target.version},
                )
        except (SQLAlchemyError, ValueError) as exc:
            log.error("migration.rollback.failed", version=target.version, error=str(exc))
            raise RollbackError(
                f"Rollback of migration {target.version} failed",
                {"version": target.version, "reason": str(exc)},
            ) from exc

        log.info("migration.rolled_back", version=target.version, description=target.description)
        return target

    # ── Introspection ────────────────────────────────────────────────────────

    async def status(self) -> List[MigrationStatus]:
        try:
            async with self.engine.begin() as conn:
                await conn.exec_driver_sql(LEDGER_DDL)
                applied = await self._applied(conn)
        except SQLAlchemyError as exc:
            raise MigrationError("Could not read the migration ledger") from exc
        return [
            MigrationStatus(
                version=m.version,
                description=m.description,
                applied=m.version in applied,
                reversible=m.reversible,
                installed_on=applied.get(m.version, {}).get("installed_on"),
                checksum_ok=(
                    applied[m.version]["checksum"] == m.checksum
                    if m.version in applied else None
                ),
            )
            for m in self.migrations
        ]


@asynccontextmanager
async def open_migrator(
    settings: Settings, migrations: Optional[Sequence[Migration]] = None,
) -> AsyncIterator[Migrator]:
    """Migrator on its own short-lived engine with foreign key enforcement off."""
    engine = create_engine(settings, enforce_foreign_keys=False)
    try:
        yield Migrator(engine, migrations)
    finally:
        await engine.dispose()
