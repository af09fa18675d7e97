"""Schema migrations for the roster tables.

Files in ``versions/`` are named ``NNN_description.sql`` and applied in name
order, each in its own transaction together with its ``schema_migrations``
row. A session-level advisory lock admits one runner per database, so app
instances starting side by side apply every file exactly once.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# pg_advisory_lock key shared by every roster migration runner
MIGRATION_LOCK_KEY = 7_417_001


@dataclass(frozen=True)
class Migration:
    """One SQL file on disk."""

    path: Path

    @property
    def version(self) -> str:
        return self.path.stem

    @property
    def sql(self) -> str:
        return self.path.read_text(encoding="utf-8")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


@dataclass
class MigrationStatus:
    """Applied and pending versions, plus applied files edited since they ran."""

    applied: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def up_to_date(self) -> bool:
        return not self.pending


class MigrationRunner:
    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, migrations_dir: Path | None = None) -> None:
        self.pool = pool
        self.migrations_dir = migrations_dir or VERSIONS_DIR

    def discover(self) -> list[Migration]:
        return [Migration(path) for path in sorted(self.migrations_dir.glob("*.sql"))]

    async def status(self) -> MigrationStatus:
        """Compare disk against the tracking table without writing anything."""
        async with self.pool.acquire() as conn:
            recorded = await self._recorded(conn) if await self._tracked(conn) else {}
        return self._compare(self.discover(), recorded)

    async def get_pending(self) -> list[str]:
        return (await self.status()).pending

    async def run_pending(self) -> list[str]:
        """Apply every pending file. Returns the versions applied by this call."""
        migrations = self.discover()
        if not migrations:
            logger.info(f"No migration files in {self.migrations_dir}")
            return []

        applied: list[str] = []
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
            try:
                await self._ensure_table(conn)
                # Read after locking; another runner may have just finished
                recorded = await self._recorded(conn)
                for name in self._compare(migrations, recorded).modified:
                    logger.warning(f"Migration {name} changed on disk after it was applied")
                for migration in migrations:
                    if migration.version not in recorded:
                        await self._apply(conn, migration)
                        applied.append(migration.version)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

        if applied:
            logger.info(f"Applied {len(applied)} migration(s): {', '.join(applied)}")
        else:
            logger.info("Roster schema is up to date")
        return applied

    @staticmethod
    def _compare(migrations: list[Migration], recorded: dict[str, str | None]) -> MigrationStatus:
        status = MigrationStatus()
        for migration in migrations:
            if migration.version not in recorded:
                status.pending.append(migration.version)
                continue
            status.applied.append(migration.version)
            checksum = recorded[migration.version]
            if checksum is not None and checksum != migration.checksum:
                status.modified.append(migration.version)
        return status

    async def _tracked(self, conn: asyncpg.Connection) -> bool:
        return bool(await conn.fetchval("SELECT to_regclass($1) IS NOT NULL", self.TRACKING_TABLE))

    async def _ensure_table(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                version    TEXT PRIMARY KEY,
                name       TEXT NOT NULL,
                checksum   TEXT,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
            """
        )

    async def _recorded(self, conn: asyncpg.Connection) -> dict[str, str | None]:
        rows = await conn.fetch(f"SELECT version, checksum FROM {self.TRACKING_TABLE}")
        return {row["version"]: row["checksum"] for row in rows}

    async def _apply(self, conn: asyncpg.Connection, migration: Migration) -> None:
        logger.info(f"Applying migration {migration.version}")
        async with conn.transaction():
            await conn.execute(migration.sql)
            await conn.execute(
                f"INSERT INTO {self.TRACKING_TABLE} (version, name, checksum) VALUES ($1, $2, $3)",
                migration.version,
                migration.path.name,
                migration.checksum,
            )
