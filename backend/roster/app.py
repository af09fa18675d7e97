"""Wires settings, storage and services into one roster engine instance."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from roster.core.config import Settings, get_settings
from roster.core.database import DatabaseManager, PoolConfig
from roster.migrations import MigrationRunner
from roster.models import GameModeCatalog
from roster.repositories import MemoryStore, PostgresStore, RosterStore
from roster.services import (
    AccountDirectory,
    CommandDispatcher,
    PendingActionContext,
    QueueManager,
    RosterEngine,
    SessionRegistry,
    SignalBus,
)
from roster.services.signals import PgNotifyPublisher, SignalHandler, listen_session_changes

logger = logging.getLogger(__name__)


class RosterApp:
    """Owns the store, the services built on it and their background tasks.

    Usage::

        async with await RosterApp.connect() as app:
            app.bus.subscribe(redraw)
            result = await app.dispatcher.dispatch(JoinQueue(...))
    """

    def __init__(
        self,
        settings: Settings,
        store: RosterStore,
        *,
        catalog: GameModeCatalog | None = None,
        db: DatabaseManager | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.db = db
        self.catalog = catalog or _load_catalog(settings)
        self.bus = SignalBus()

        common: dict[str, Any] = {
            "retries": settings.transaction_retries,
            "retry_delay": settings.transaction_retry_delay,
        }
        self.accounts = AccountDirectory(store, self.catalog, self.bus, **common)
        self.sessions = SessionRegistry(
            store,
            self.catalog,
            self.bus,
            default_timezone=settings.default_timezone,
            **common,
        )
        self.queue = QueueManager(store, self.catalog, self.bus, **common)
        self.roster = RosterEngine(store, self.catalog, self.bus, **common)
        self.dispatcher = CommandDispatcher(self.sessions, self.queue, self.roster, self.accounts)
        self.pending = PendingActionContext(
            ttl=settings.pending_action_ttl,
            maxsize=settings.pending_action_maxsize,
        )
        self._tasks: list[asyncio.Task] = []
        self._sweeper: asyncio.Task | None = None

    @classmethod
    async def connect(cls, settings: Settings | None = None, *, migrate: bool = True) -> RosterApp:
        """Build an app on the configured store. In-memory unless a database URL is set."""
        settings = settings or get_settings()
        if not settings.use_database:
            logger.info("No database configured, using in-memory store")
            return cls(settings, MemoryStore())

        db = DatabaseManager(settings.database_url, PoolConfig.from_settings(settings))
        await db.connect()
        try:
            if migrate:
                await MigrationRunner(db.pool).run_pending()
        except BaseException:
            await db.disconnect()
            raise
        app = cls(settings, PostgresStore(db.pool), db=db)
        app.bus.subscribe(PgNotifyPublisher(db.pool))
        return app

    def start(self) -> None:
        """Start background housekeeping. Idempotent."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())
            self._tasks.append(self._sweeper)
            logger.info(f"Roster engine ready with {len(self.catalog)} game modes")

    def listen_remote(self, handler: SignalHandler) -> None:
        """Deliver SessionChanged notifications from other processes to ``handler``."""
        if self.db is None:
            raise RuntimeError("Remote signals need a database connection")
        self._tasks.append(asyncio.create_task(listen_session_changes(self.db.pool, handler)))

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self._sweeper = None
        await self.store.close()
        if self.db is not None:
            await self.db.disconnect()

    async def __aenter__(self) -> RosterApp:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _sweep_loop(self) -> None:
        """Expire abandoned wizards at a fraction of their timeout."""
        interval = max(1.0, self.settings.pending_action_ttl / 4)
        while True:
            await asyncio.sleep(interval)
            self.pending.sweep()


def _load_catalog(settings: Settings) -> GameModeCatalog:
    if settings.game_modes_file is not None:
        return GameModeCatalog.from_file(settings.game_modes_file)
    return GameModeCatalog()
