"""Database connection management for the roster engine.

Supabase-style connection modes:
  - Session Pooler  (port 5432) : persistent servers, supports prepared statements
  - Transaction Pooler (port 6543) : serverless/edge, no prepared statement support
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import asyncpg

from roster.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Database pool configuration with sensible defaults."""

    min_size: int = 1
    max_size: int = 5
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    max_retries: int = 3
    retry_delay: float = 3.0
    # None lets asyncpg read sslmode from the DSN
    ssl: str | None = None

    # Keep-alive settings (Session Pooler only)
    tcp_keepalives_idle: int = 30
    tcp_keepalives_interval: int = 10
    tcp_keepalives_count: int = 3

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> PoolConfig:
        """Build a PoolConfig from application settings."""
        values: dict[str, Any] = {
            "min_size": settings.db_min_size,
            "max_size": settings.db_max_size,
        }
        values.update(overrides)
        return cls(**values)


class DatabaseManager:
    """Manages PostgreSQL connection pool lifecycle.

    Handles Transaction vs Session Pooler detection, retry logic,
    and proper lifecycle management.
    """

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._pooler_mode: str = "transaction" if ":6543" in database_url else "session"

    # ── Pool builders ────────────────────────────────────────────────

    async def _init_session_connection(self, conn: asyncpg.Connection) -> None:
        """Set session-level statement timeout (Session Pooler only)."""
        timeout_ms = int(self.config.command_timeout * 1000)
        await conn.execute(f"SET statement_timeout = {timeout_ms}")

    def _session_pool_kwargs(self) -> dict[str, Any]:
        """Build asyncpg.create_pool kwargs for Session Pooler (port 5432)."""
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "statement_cache_size": 100,
            "max_inactive_connection_lifetime": cfg.max_inactive_connection_lifetime,
            "server_settings": {
                "tcp_keepalives_idle": str(cfg.tcp_keepalives_idle),
                "tcp_keepalives_interval": str(cfg.tcp_keepalives_interval),
                "tcp_keepalives_count": str(cfg.tcp_keepalives_count),
            },
            "init": self._init_session_connection,
        }
        if cfg.ssl is not None:
            kwargs["ssl"] = cfg.ssl
        return kwargs

    def _transaction_pool_kwargs(self) -> dict[str, Any]:
        """Build asyncpg.create_pool kwargs for Transaction Pooler (port 6543).

        PgBouncer in transaction mode:
        - No prepared statements (cache=0)
        - No server_settings (PgBouncer doesn't forward them)
        - min_size=0: don't hold idle connections (PgBouncer kills them)
        """
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "min_size": 0,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "statement_cache_size": 0,
            "max_inactive_connection_lifetime": 0,
        }
        if cfg.ssl is not None:
            kwargs["ssl"] = cfg.ssl
        return kwargs

    # ── Diagnostics ──────────────────────────────────────────────────

    def _diagnose_connection(self) -> None:
        """Log DNS-level diagnostics when DB connection fails."""
        parsed = urlparse(self.database_url)
        host = parsed.hostname or "unknown"
        port = parsed.port or 5432

        logger.info(f"[DB Diag] host={host}, port={port}")
        try:
            addrs = socket.getaddrinfo(host, port, socket.AF_UNSPEC, socket.SOCK_STREAM)
            ips = {a[4][0] for a in addrs}
            logger.info(f"[DB Diag] DNS OK: {ips}")
        except socket.gaierror as e:
            logger.error(f"[DB Diag] DNS FAILED: {e}")

    # ── Lifecycle ────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Initialize database connection pool with retry."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        _builders = {
            "session": self._session_pool_kwargs,
            "transaction": self._transaction_pool_kwargs,
        }
        pool_kwargs = _builders[self._pooler_mode]()
        logger.info(f"Connecting with {self._pooler_mode} pooler mode")

        cfg = self.config
        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**pool_kwargs)

                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")

                logger.info(
                    f"Database pool created and verified "
                    f"(mode={self._pooler_mode}, "
                    f"size={pool_kwargs.get('min_size', 0)}-{cfg.max_size})"
                )
                return
            except Exception as e:
                if attempt < cfg.max_retries:
                    delay = cfg.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                        f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s..."
                    )
                    if attempt == 1:
                        self._diagnose_connection()
                    if self._pool:
                        await self._pool.close()
                        self._pool = None
                    await asyncio.sleep(delay)
                else:
                    logger.exception(
                        f"Database connection failed after {cfg.max_retries} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool is None:
            return

        await self._pool.close()
        self._pool = None
        logger.info("Database pool closed")

    async def check_health(self) -> bool:
        """Test if pool can actually execute a query."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
            return True
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError):
            return False

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the database connection pool. Raises if not initialized."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool
