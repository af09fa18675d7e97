"""Run database migrations for the roster engine.

Usage:
    python -m roster.migrate          # Run all pending migrations
    python -m roster.migrate --dry    # Show pending migrations without applying
"""

import asyncio
import sys
from pathlib import Path

import asyncpg
from dotenv import load_dotenv

from roster.core.config import Settings
from roster.core.logging import setup_logging
from roster.migrations import MigrationRunner

# backend/.env holds ROSTER_DATABASE_URL
load_dotenv(Path(__file__).resolve().parent.parent / ".env")


async def main(argv: list[str]) -> int:
    settings = Settings()
    setup_logging(settings)
    if not settings.database_url:
        print("ERROR: ROSTER_DATABASE_URL not set. Check backend/.env or environment variables.")
        return 1

    pool = await asyncpg.create_pool(
        settings.database_url, min_size=1, max_size=2, statement_cache_size=0
    )
    if pool is None:
        print("ERROR: Failed to create connection pool.")
        return 1

    try:
        runner = MigrationRunner(pool)

        if "--dry" in argv:
            status = await runner.status()

            print(f"Applied: {len(status.applied)} | Pending: {len(status.pending)}")
            for v in status.pending:
                print(f"  -> {v}")
            for v in status.modified:
                print(f"  !! {v} changed since it was applied")
            if status.up_to_date:
                print("Database is up to date.")
        else:
            newly_applied = await runner.run_pending()
            if not newly_applied:
                print("No pending migrations.")
            else:
                print(f"Applied {len(newly_applied)} migration(s).")
    finally:
        await pool.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
