"""In-process store guarded by per-session and per-user asyncio locks.

Each scope works on live dicts and restores a snapshot if the body raises,
so a rejected command never leaves a half-applied change behind.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone

from roster.core.errors import DuplicateAccount, NotFound
from roster.models import Account, Profile, QueueEntry, RoleRank, RosterSlot, Session, SessionStatus
from roster.repositories.base import order_accounts

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _LockTable:
    """Per-key asyncio locks, dropped once no caller holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[object, tuple[asyncio.Lock, list[int]]] = {}

    @asynccontextmanager
    async def hold(self, key: object) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = (asyncio.Lock(), [0])
        lock, refs = entry
        refs[0] += 1
        try:
            async with lock:
                yield
        finally:
            refs[0] -= 1
            if refs[0] == 0:
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class MemorySessionTransaction:
    def __init__(self, store: MemoryStore, session: Session) -> None:
        self._store = store
        self.session = copy.deepcopy(session)

    @property
    def _queue(self) -> dict[int, QueueEntry]:
        return self._store._queues.setdefault(self.session.id, {})

    @property
    def _roster(self) -> dict[int, RosterSlot]:
        return self._store._rosters.setdefault(self.session.id, {})

    async def save_session(self, session: Session) -> None:
        self._store._sessions[session.id] = copy.deepcopy(session)
        self.session = copy.deepcopy(session)

    # --- queue ---

    async def list_queue(self) -> list[QueueEntry]:
        return [copy.deepcopy(e) for e in sorted(self._queue.values(), key=lambda e: e.position)]

    async def get_queue_entry(self, entry_id: int) -> QueueEntry | None:
        entry = self._queue.get(entry_id)
        return copy.deepcopy(entry) if entry else None

    async def find_queue_entry(self, user_id: str) -> QueueEntry | None:
        for entry in self._queue.values():
            if entry.user_id == user_id:
                return copy.deepcopy(entry)
        return None

    async def add_queue_entry(
        self,
        user_id: str,
        account_ids: Sequence[int],
        roles: Sequence[str],
        is_streaming: bool,
        note: str | None,
    ) -> QueueEntry:
        seq = self._store._queue_seq.get(self.session.id, 0) + 1
        self._store._queue_seq[self.session.id] = seq
        entry = QueueEntry(
            id=next(self._store._ids),
            session_id=self.session.id,
            user_id=user_id,
            account_ids=list(account_ids),
            roles=list(roles),
            is_streaming=is_streaming,
            note=note,
            position=seq,
            joined_at=_now(),
        )
        self._queue[entry.id] = entry
        return copy.deepcopy(entry)

    async def delete_queue_entry(self, entry_id: int) -> bool:
        return self._queue.pop(entry_id, None) is not None

    async def set_queue_streaming(self, entry_id: int, value: bool) -> None:
        self._queue[entry_id].is_streaming = value

    async def clear_queue(self) -> int:
        count = len(self._queue)
        self._queue.clear()
        return count

    # --- roster ---

    async def list_roster(self) -> list[RosterSlot]:
        return [copy.deepcopy(s) for s in sorted(self._roster.values(), key=lambda s: s.id)]

    async def find_roster_slot(self, user_id: str) -> RosterSlot | None:
        for slot in self._roster.values():
            if slot.user_id == user_id:
                return copy.deepcopy(slot)
        return None

    async def add_roster_slot(
        self,
        user_id: str,
        account_id: int,
        role: str,
        is_streaming: bool,
        selected_by: str,
    ) -> RosterSlot:
        slot = RosterSlot(
            id=next(self._store._ids),
            session_id=self.session.id,
            user_id=user_id,
            account_id=account_id,
            role=role,
            selected_by=selected_by,
            is_streaming=is_streaming,
            selected_at=_now(),
        )
        self._roster[slot.id] = slot
        return copy.deepcopy(slot)

    async def delete_roster_slot(self, slot_id: int) -> bool:
        return self._roster.pop(slot_id, None) is not None

    async def set_roster_streaming(self, slot_id: int, value: bool) -> None:
        self._roster[slot_id].is_streaming = value

    async def clear_roster(self) -> int:
        count = len(self._roster)
        self._roster.clear()
        return count

    # --- accounts ---

    async def list_accounts(self, user_id: str) -> list[Account]:
        return await self._store.list_accounts(user_id)


class MemoryAccountTransaction:
    def __init__(self, store: MemoryStore, user_id: str) -> None:
        self._store = store
        self.user_id = user_id

    def _owned(self, account_id: int) -> Account:
        account = self._store._accounts.get(account_id)
        if account is None or account.user_id != self.user_id:
            raise NotFound(f"Account {account_id} not found")
        return account

    async def list_accounts(self) -> list[Account]:
        return await self._store.list_accounts(self.user_id)

    async def add_account(self, name: str, is_primary: bool) -> Account:
        accounts = [a for a in self._store._accounts.values() if a.user_id == self.user_id]
        if any(a.name.lower() == name.lower() for a in accounts):
            raise DuplicateAccount(f"You already have an account named {name!r}")
        if is_primary:
            for a in accounts:
                a.is_primary = False
        account = Account(
            id=next(self._store._ids),
            user_id=self.user_id,
            name=name,
            is_primary=is_primary,
            created_at=_now(),
        )
        self._store._accounts[account.id] = account
        return copy.deepcopy(account)

    async def save_ranks(self, account_id: int, ranks: dict[str, RoleRank]) -> None:
        self._owned(account_id).ranks = dict(ranks)

    async def set_primary(self, account_id: int) -> None:
        self._owned(account_id)
        for account in self._store._accounts.values():
            if account.user_id == self.user_id:
                account.is_primary = account.id == account_id

    async def delete_account(self, account_id: int) -> bool:
        account = self._store._accounts.get(account_id)
        if account is None or account.user_id != self.user_id:
            return False
        del self._store._accounts[account_id]
        return True

    async def account_on_active_roster(self, account_id: int) -> bool:
        for session_id, slots in self._store._rosters.items():
            if self._store._sessions[session_id].is_cancelled:
                continue
            if any(s.account_id == account_id for s in slots.values()):
                return True
        return False

    async def get_profile(self) -> Profile | None:
        return await self._store.get_profile(self.user_id)

    async def save_profile(self, profile: Profile) -> None:
        self._store._profiles[self.user_id] = copy.deepcopy(profile)


class MemoryStore:
    """Dict-backed store for tests and single-process deployments."""

    conflict_errors: tuple[type[BaseException], ...] = ()

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._session_ids = itertools.count(1)
        self._sessions: dict[int, Session] = {}
        self._queues: dict[int, dict[int, QueueEntry]] = {}
        self._rosters: dict[int, dict[int, RosterSlot]] = {}
        self._queue_seq: dict[int, int] = {}
        self._accounts: dict[int, Account] = {}
        self._profiles: dict[str, Profile] = {}
        self._session_locks = _LockTable()
        self._user_locks = _LockTable()

    # ── Reads ────────────────────────────────────────────────────────

    async def create_session(
        self,
        creator_id: str,
        game_mode: str,
        scheduled_time: datetime,
        timezone: str,
        *,
        description: str | None = None,
        max_rank_diff: int | None = None,
        guild_id: str | None = None,
        channel_id: str | None = None,
    ) -> Session:
        session = Session(
            id=next(self._session_ids),
            creator_id=creator_id,
            game_mode=game_mode,
            scheduled_time=scheduled_time,
            timezone=timezone,
            description=description,
            max_rank_diff=max_rank_diff,
            guild_id=guild_id,
            channel_id=channel_id,
            created_at=_now(),
        )
        self._sessions[session.id] = session
        return replace(session)

    async def get_session(self, session_id: int) -> Session | None:
        session = self._sessions.get(session_id)
        return replace(session) if session else None

    async def list_sessions(
        self,
        statuses: Sequence[SessionStatus],
        guild_id: str | None = None,
    ) -> list[Session]:
        sessions = [
            replace(s)
            for s in self._sessions.values()
            if s.status in statuses and (guild_id is None or s.guild_id == guild_id)
        ]
        return sorted(sessions, key=lambda s: (s.scheduled_time, s.id))

    async def list_queue(self, session_id: int) -> list[QueueEntry]:
        entries = self._queues.get(session_id, {}).values()
        return [copy.deepcopy(e) for e in sorted(entries, key=lambda e: e.position)]

    async def list_roster(self, session_id: int) -> list[RosterSlot]:
        slots = self._rosters.get(session_id, {}).values()
        return [copy.deepcopy(s) for s in sorted(slots, key=lambda s: s.id)]

    async def list_accounts(self, user_id: str) -> list[Account]:
        owned = [copy.deepcopy(a) for a in self._accounts.values() if a.user_id == user_id]
        return order_accounts(owned)

    async def get_profile(self, user_id: str) -> Profile | None:
        profile = self._profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    # ── Scopes ───────────────────────────────────────────────────────

    @asynccontextmanager
    async def session_scope(self, session_id: int) -> AsyncIterator[MemorySessionTransaction]:
        async with self._session_locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound(f"Session {session_id} not found")
            snapshot = (
                copy.deepcopy(session),
                copy.deepcopy(self._queues.get(session_id, {})),
                copy.deepcopy(self._rosters.get(session_id, {})),
                self._queue_seq.get(session_id, 0),
            )
            try:
                yield MemorySessionTransaction(self, session)
            except BaseException:
                (
                    self._sessions[session_id],
                    self._queues[session_id],
                    self._rosters[session_id],
                    self._queue_seq[session_id],
                ) = snapshot
                raise

    @asynccontextmanager
    async def account_scope(self, user_id: str) -> AsyncIterator[MemoryAccountTransaction]:
        async with self._user_locks.hold(user_id):
            accounts_snapshot = copy.deepcopy(
                {k: v for k, v in self._accounts.items() if v.user_id == user_id}
            )
            profile_snapshot = copy.deepcopy(self._profiles.get(user_id))
            try:
                yield MemoryAccountTransaction(self, user_id)
            except BaseException:
                for k in [k for k, v in self._accounts.items() if v.user_id == user_id]:
                    del self._accounts[k]
                self._accounts.update(accounts_snapshot)
                if profile_snapshot is None:
                    self._profiles.pop(user_id, None)
                else:
                    self._profiles[user_id] = profile_snapshot
                raise

    async def close(self) -> None:
        logger.debug("Memory store closed")
