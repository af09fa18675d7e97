"""Shared transaction plumbing for roster services."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from roster.core.errors import ConflictRetryExhausted
from roster.models import GameModeCatalog
from roster.repositories import AccountTransaction, RosterStore, SessionTransaction
from roster.services.signals import SessionChanged, SignalBus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseService:
    """Runs mutations inside store scopes and signals after commit."""

    def __init__(
        self,
        store: RosterStore,
        catalog: GameModeCatalog,
        bus: SignalBus,
        *,
        retries: int = 3,
        retry_delay: float = 0.05,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.bus = bus
        self.retries = max(1, retries)
        self.retry_delay = retry_delay

    async def _retrying(self, label: str, attempt_once: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self.retries + 1):
            try:
                return await attempt_once()
            except self.store.conflict_errors as exc:
                if attempt == self.retries:
                    logger.warning(f"{label}: gave up after {attempt} conflicting attempts")
                    raise ConflictRetryExhausted(f"{label} kept conflicting, try again") from exc
                delay = self.retry_delay * attempt
                logger.info(
                    f"{label}: serialization conflict ({type(exc).__name__}), "
                    f"retry {attempt}/{self.retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _in_session(
        self,
        session_id: int,
        body: Callable[[SessionTransaction], Awaitable[T]],
        *,
        notify: bool = True,
    ) -> T:
        """Run ``body`` atomically against one session, then publish ``SessionChanged``."""

        async def attempt_once() -> T:
            async with self.store.session_scope(session_id) as tx:
                return await body(tx)

        result = await self._retrying(f"session {session_id}", attempt_once)
        if notify:
            await self.bus.publish(SessionChanged(session_id))
        return result

    async def _in_account(
        self,
        user_id: str,
        body: Callable[[AccountTransaction], Awaitable[T]],
    ) -> T:
        """Run ``body`` atomically against one user's accounts."""

        async def attempt_once() -> T:
            async with self.store.account_scope(user_id) as tx:
                return await body(tx)

        return await self._retrying(f"accounts of {user_id}", attempt_once)
