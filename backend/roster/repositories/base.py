"""Storage interface for sessions, queues, rosters and accounts.

Separates persistence from roster rules. Implementations:
- MemoryStore: in-process dicts guarded by per-session asyncio locks
- PostgresStore: asyncpg with a serializable transaction per scope
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Protocol, runtime_checkable

from roster.models import Account, Profile, QueueEntry, RoleRank, RosterSlot, Session, SessionStatus


class SessionTransaction(Protocol):
    """Mutations on one session, serialized against every other scope on it.

    ``session`` is the row as read when the scope was entered. Account reads
    go through ``list_accounts`` so they share the scope's snapshot.
    """

    session: Session

    async def save_session(self, session: Session) -> None: ...

    async def list_queue(self) -> list[QueueEntry]: ...

    async def get_queue_entry(self, entry_id: int) -> QueueEntry | None: ...

    async def find_queue_entry(self, user_id: str) -> QueueEntry | None: ...

    async def add_queue_entry(
        self,
        user_id: str,
        account_ids: Sequence[int],
        roles: Sequence[str],
        is_streaming: bool,
        note: str | None,
    ) -> QueueEntry: ...

    async def delete_queue_entry(self, entry_id: int) -> bool: ...

    async def set_queue_streaming(self, entry_id: int, value: bool) -> None: ...

    async def clear_queue(self) -> int: ...

    async def list_roster(self) -> list[RosterSlot]: ...

    async def find_roster_slot(self, user_id: str) -> RosterSlot | None: ...

    async def add_roster_slot(
        self,
        user_id: str,
        account_id: int,
        role: str,
        is_streaming: bool,
        selected_by: str,
    ) -> RosterSlot: ...

    async def delete_roster_slot(self, slot_id: int) -> bool: ...

    async def set_roster_streaming(self, slot_id: int, value: bool) -> None: ...

    async def clear_roster(self) -> int: ...

    async def list_accounts(self, user_id: str) -> list[Account]: ...


class AccountTransaction(Protocol):
    """Mutations on one user's accounts and profile, serialized per user."""

    user_id: str

    async def list_accounts(self) -> list[Account]: ...

    async def add_account(self, name: str, is_primary: bool) -> Account: ...

    async def save_ranks(self, account_id: int, ranks: dict[str, RoleRank]) -> None: ...

    async def set_primary(self, account_id: int) -> None: ...

    async def delete_account(self, account_id: int) -> bool: ...

    async def account_on_active_roster(self, account_id: int) -> bool: ...

    async def get_profile(self) -> Profile | None: ...

    async def save_profile(self, profile: Profile) -> None: ...


@runtime_checkable
class RosterStore(Protocol):
    """Top-level store: unlocked reads plus locked mutation scopes."""

    # Exceptions meaning "the transaction lost a race, run it again"
    conflict_errors: tuple[type[BaseException], ...]

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
    ) -> Session: ...

    async def get_session(self, session_id: int) -> Session | None: ...

    async def list_sessions(
        self,
        statuses: Sequence[SessionStatus],
        guild_id: str | None = None,
    ) -> list[Session]: ...

    async def list_queue(self, session_id: int) -> list[QueueEntry]: ...

    async def list_roster(self, session_id: int) -> list[RosterSlot]: ...

    async def list_accounts(self, user_id: str) -> list[Account]: ...

    async def get_profile(self, user_id: str) -> Profile | None: ...

    def session_scope(self, session_id: int) -> AbstractAsyncContextManager[SessionTransaction]: ...

    def account_scope(self, user_id: str) -> AbstractAsyncContextManager[AccountTransaction]: ...

    async def close(self) -> None: ...


def order_accounts(accounts: list[Account]) -> list[Account]:
    """Directory order: primary first, then creation order."""
    return sorted(accounts, key=lambda a: (not a.is_primary, a.id))
