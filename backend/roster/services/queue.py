"""Waiting queue: join, leave, streaming flag."""

from __future__ import annotations

import logging
from collections import Counter

from roster.core.errors import (
    AlreadyQueued,
    AlreadyRostered,
    IneligibleAccount,
    NotFound,
    NotParticipating,
    NotQueued,
    SessionNotJoinable,
)
from roster.models import QueueEntry, RosterSlot, SessionStatus
from roster.repositories import SessionTransaction
from roster.services.base import BaseService
from roster.services.sessions import ensure_not_cancelled

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 200


class QueueManager(BaseService):
    """Owns the per-session waiting list."""

    async def list_queue(self, session_id: int) -> list[QueueEntry]:
        """Queue in join order, for the creator to review. Read-only."""
        if await self.store.get_session(session_id) is None:
            raise NotFound(f"Session {session_id} not found")
        return await self.store.list_queue(session_id)

    async def join(
        self,
        session_id: int,
        user_id: str,
        account_ids: list[int],
        roles: list[str] | None = None,
        *,
        streaming: bool = False,
        note: str | None = None,
    ) -> QueueEntry:
        """Put ``user_id`` in the queue with candidate accounts and roles."""
        note = (note or "").strip()[:MAX_NOTE_LENGTH] or None
        candidates = list(dict.fromkeys(account_ids or []))

        async def body(tx: SessionTransaction) -> QueueEntry:
            session = tx.session
            ensure_not_cancelled(session)
            if session.status is SessionStatus.CLOSED:
                raise SessionNotJoinable(f"Session {session_id} is closed")
            if await tx.find_queue_entry(user_id):
                raise AlreadyQueued("You are already in the queue for this session")
            if await tx.find_roster_slot(user_id):
                raise AlreadyRostered("You are already on the team for this session")

            mode = self.catalog.get(session.game_mode)
            wanted = mode.normalize_roles(roles)

            if not candidates:
                raise IneligibleAccount("Pick at least one account to queue with")
            owned = {a.id for a in await tx.list_accounts(user_id)}
            foreign = [a for a in candidates if a not in owned]
            if foreign:
                raise IneligibleAccount(f"Account(s) {foreign} do not belong to you")

            counts = Counter(slot.role for slot in await tx.list_roster())
            if all(mode.is_role_full(role, counts) for role in wanted):
                raise SessionNotJoinable(
                    f"No open slot left for {', '.join(wanted)} in session {session_id}"
                )

            return await tx.add_queue_entry(user_id, candidates, wanted, streaming, note)

        entry = await self._in_session(session_id, body)
        logger.info(
            f"{user_id} joined queue of session {session_id} "
            f"(roles={entry.roles}, accounts={entry.account_ids})"
        )
        return entry

    async def leave(self, session_id: int, user_id: str) -> bool:
        """Remove the user's queue entry. Raises ``NotQueued`` if there is none."""

        async def body(tx: SessionTransaction) -> bool:
            ensure_not_cancelled(tx.session)
            entry = await tx.find_queue_entry(user_id)
            if entry is None:
                raise NotQueued("You are not in the queue for this session")
            return await tx.delete_queue_entry(entry.id)

        removed = await self._in_session(session_id, body)
        logger.info(f"{user_id} left queue of session {session_id}")
        return removed

    async def set_streaming(
        self,
        session_id: int,
        user_id: str,
        value: bool | None = None,
    ) -> QueueEntry | RosterSlot:
        """Set the streaming flag wherever the user is; ``None`` toggles it."""

        async def body(tx: SessionTransaction) -> QueueEntry | RosterSlot:
            ensure_not_cancelled(tx.session)
            entry = await tx.find_queue_entry(user_id)
            if entry is not None:
                entry.is_streaming = (not entry.is_streaming) if value is None else value
                await tx.set_queue_streaming(entry.id, entry.is_streaming)
                return entry
            slot = await tx.find_roster_slot(user_id)
            if slot is not None:
                slot.is_streaming = (not slot.is_streaming) if value is None else value
                await tx.set_roster_streaming(slot.id, slot.is_streaming)
                return slot
            raise NotParticipating("You need to join the session first")

        target = await self._in_session(session_id, body)
        logger.info(
            f"{user_id} streaming={'on' if target.is_streaming else 'off'} "
            f"in session {session_id}"
        )
        return target
