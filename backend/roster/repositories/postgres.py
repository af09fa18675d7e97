"""asyncpg-backed store for sessions, accounts, queue and roster tables.

Every mutation scope runs inside one SERIALIZABLE transaction. Session scopes
lock the session row (``FOR UPDATE``); account scopes take a transaction-level
advisory lock on the user id.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime

import asyncpg

from roster.core.errors import DuplicateAccount, NotFound
from roster.models import Account, Profile, QueueEntry, RoleRank, RosterSlot, Session, SessionStatus

logger = logging.getLogger(__name__)

_SESSION_COLUMNS = (
    "id, creator_id, guild_id, channel_id, game_mode, scheduled_time, timezone, "
    "description, max_rank_diff, status, message_id, created_at"
)

_ACCOUNT_COLUMNS = "id, user_id, name, ranks, is_primary, created_at"

_QUEUE_COLUMNS = (
    "id, session_id, user_id, account_ids, roles, is_streaming, note, position, joined_at"
)

_ROSTER_COLUMNS = (
    "id, session_id, user_id, account_id, role, is_streaming, selected_by, selected_at"
)

_PROFILE_COLUMNS = "user_id, timezone, preferred_roles, created_at"


def _session(row: asyncpg.Record) -> Session:
    data = dict(row)
    data["status"] = SessionStatus(data["status"])
    return Session(**data)


def _account(row: asyncpg.Record) -> Account:
    data = dict(row)
    raw = data.pop("ranks") or "{}"
    ranks = json.loads(raw) if isinstance(raw, str) else raw
    return Account(ranks={role: RoleRank.from_dict(r) for role, r in ranks.items()}, **data)


def _queue_entry(row: asyncpg.Record) -> QueueEntry:
    data = dict(row)
    data["account_ids"] = list(data["account_ids"])
    data["roles"] = list(data["roles"])
    return QueueEntry(**data)


def _roster_slot(row: asyncpg.Record) -> RosterSlot:
    return RosterSlot(**dict(row))


def _profile(row: asyncpg.Record) -> Profile:
    data = dict(row)
    data["preferred_roles"] = list(data["preferred_roles"] or [])
    return Profile(**data)


def _ranks_json(ranks: dict[str, RoleRank]) -> str:
    return json.dumps({role: rank.to_dict() for role, rank in ranks.items()})


class PostgresSessionTransaction:
    """Pure SQL operations on one locked session row and its queue/roster."""

    def __init__(self, conn: asyncpg.Connection, session: Session) -> None:
        self.conn = conn
        self.session = session

    async def save_session(self, session: Session) -> None:
        await self.conn.execute(
            """
            UPDATE sessions SET
                scheduled_time = $2,
                timezone       = $3,
                description    = $4,
                max_rank_diff  = $5,
                status         = $6,
                message_id     = $7
            WHERE id = $1
            """,
            session.id,
            session.scheduled_time,
            session.timezone,
            session.description,
            session.max_rank_diff,
            session.status.value,
            session.message_id,
        )
        self.session = session

    # ==================== Queue ====================

    async def list_queue(self) -> list[QueueEntry]:
        rows = await self.conn.fetch(
            f"SELECT {_QUEUE_COLUMNS} FROM session_queue "
            "WHERE session_id = $1 ORDER BY position ASC",
            self.session.id,
        )
        return [_queue_entry(row) for row in rows]

    async def get_queue_entry(self, entry_id: int) -> QueueEntry | None:
        row = await self.conn.fetchrow(
            f"SELECT {_QUEUE_COLUMNS} FROM session_queue WHERE id = $1 AND session_id = $2",
            entry_id,
            self.session.id,
        )
        return _queue_entry(row) if row else None

    async def find_queue_entry(self, user_id: str) -> QueueEntry | None:
        row = await self.conn.fetchrow(
            f"SELECT {_QUEUE_COLUMNS} FROM session_queue WHERE session_id = $1 AND user_id = $2",
            self.session.id,
            user_id,
        )
        return _queue_entry(row) if row else None

    async def add_queue_entry(
        self,
        user_id: str,
        account_ids: Sequence[int],
        roles: Sequence[str],
        is_streaming: bool,
        note: str | None,
    ) -> QueueEntry:
        position = await self.conn.fetchval(
            "UPDATE sessions SET queue_seq = queue_seq + 1 WHERE id = $1 RETURNING queue_seq",
            self.session.id,
        )
        row = await self.conn.fetchrow(
            f"""
            INSERT INTO session_queue
                (session_id, user_id, account_ids, roles, is_streaming, note, position)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING {_QUEUE_COLUMNS}
            """,
            self.session.id,
            user_id,
            list(account_ids),
            list(roles),
            is_streaming,
            note,
            position,
        )
        return _queue_entry(row)

    async def delete_queue_entry(self, entry_id: int) -> bool:
        result: str = await self.conn.execute(
            "DELETE FROM session_queue WHERE id = $1 AND session_id = $2",
            entry_id,
            self.session.id,
        )
        return result == "DELETE 1"

    async def set_queue_streaming(self, entry_id: int, value: bool) -> None:
        await self.conn.execute(
            "UPDATE session_queue SET is_streaming = $2 WHERE id = $1",
            entry_id,
            value,
        )

    async def clear_queue(self) -> int:
        result = await self.conn.execute(
            "DELETE FROM session_queue WHERE session_id = $1",
            self.session.id,
        )
        # result is like "DELETE N"
        return int(result.split()[-1])

    # ==================== Roster ====================

    async def list_roster(self) -> list[RosterSlot]:
        rows = await self.conn.fetch(
            f"SELECT {_ROSTER_COLUMNS} FROM session_roster WHERE session_id = $1 ORDER BY id ASC",
            self.session.id,
        )
        return [_roster_slot(row) for row in rows]

    async def find_roster_slot(self, user_id: str) -> RosterSlot | None:
        row = await self.conn.fetchrow(
            f"SELECT {_ROSTER_COLUMNS} FROM session_roster WHERE session_id = $1 AND user_id = $2",
            self.session.id,
            user_id,
        )
        return _roster_slot(row) if row else None

    async def add_roster_slot(
        self,
        user_id: str,
        account_id: int,
        role: str,
        is_streaming: bool,
        selected_by: str,
    ) -> RosterSlot:
        row = await self.conn.fetchrow(
            f"""
            INSERT INTO session_roster
                (session_id, user_id, account_id, role, is_streaming, selected_by)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING {_ROSTER_COLUMNS}
            """,
            self.session.id,
            user_id,
            account_id,
            role,
            is_streaming,
            selected_by,
        )
        return _roster_slot(row)

    async def delete_roster_slot(self, slot_id: int) -> bool:
        result: str = await self.conn.execute(
            "DELETE FROM session_roster WHERE id = $1 AND session_id = $2",
            slot_id,
            self.session.id,
        )
        return result == "DELETE 1"

    async def set_roster_streaming(self, slot_id: int, value: bool) -> None:
        await self.conn.execute(
            "UPDATE session_roster SET is_streaming = $2 WHERE id = $1",
            slot_id,
            value,
        )

    async def clear_roster(self) -> int:
        result = await self.conn.execute(
            "DELETE FROM session_roster WHERE session_id = $1",
            self.session.id,
        )
        return int(result.split()[-1])

    # ==================== Accounts ====================

    async def list_accounts(self, user_id: str) -> list[Account]:
        rows = await self.conn.fetch(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE user_id = $1 "
            "ORDER BY is_primary DESC, id ASC",
            user_id,
        )
        return [_account(row) for row in rows]


class PostgresAccountTransaction:
    """Pure SQL operations on one user's accounts and profile."""

    def __init__(self, conn: asyncpg.Connection, user_id: str) -> None:
        self.conn = conn
        self.user_id = user_id

    async def list_accounts(self) -> list[Account]:
        rows = await self.conn.fetch(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE user_id = $1 "
            "ORDER BY is_primary DESC, id ASC",
            self.user_id,
        )
        return [_account(row) for row in rows]

    async def add_account(self, name: str, is_primary: bool) -> Account:
        exists = await self.conn.fetchval(
            "SELECT 1 FROM accounts WHERE user_id = $1 AND LOWER(name) = LOWER($2)",
            self.user_id,
            name,
        )
        if exists:
            raise DuplicateAccount(f"You already have an account named {name!r}")
        if is_primary:
            await self.conn.execute(
                "UPDATE accounts SET is_primary = FALSE WHERE user_id = $1 AND is_primary",
                self.user_id,
            )
        row = await self.conn.fetchrow(
            f"""
            INSERT INTO accounts (user_id, name, is_primary)
            VALUES ($1, $2, $3)
            RETURNING {_ACCOUNT_COLUMNS}
            """,
            self.user_id,
            name,
            is_primary,
        )
        return _account(row)

    async def save_ranks(self, account_id: int, ranks: dict[str, RoleRank]) -> None:
        result: str = await self.conn.execute(
            "UPDATE accounts SET ranks = $3::jsonb WHERE id = $1 AND user_id = $2",
            account_id,
            self.user_id,
            _ranks_json(ranks),
        )
        if result != "UPDATE 1":
            raise NotFound(f"Account {account_id} not found")

    async def set_primary(self, account_id: int) -> None:
        owned = await self.conn.fetchval(
            "SELECT 1 FROM accounts WHERE id = $1 AND user_id = $2",
            account_id,
            self.user_id,
        )
        if not owned:
            raise NotFound(f"Account {account_id} not found")
        # Clear first: the partial unique index allows one primary per user
        await self.conn.execute(
            "UPDATE accounts SET is_primary = FALSE WHERE user_id = $1 AND id <> $2",
            self.user_id,
            account_id,
        )
        await self.conn.execute(
            "UPDATE accounts SET is_primary = TRUE WHERE id = $1",
            account_id,
        )

    async def delete_account(self, account_id: int) -> bool:
        result: str = await self.conn.execute(
            "DELETE FROM accounts WHERE id = $1 AND user_id = $2",
            account_id,
            self.user_id,
        )
        return result == "DELETE 1"

    async def account_on_active_roster(self, account_id: int) -> bool:
        found = await self.conn.fetchval(
            """
            SELECT 1 FROM session_roster r
            JOIN sessions s ON s.id = r.session_id
            WHERE r.account_id = $1 AND s.status <> 'cancelled'
            LIMIT 1
            """,
            account_id,
        )
        return bool(found)

    async def get_profile(self) -> Profile | None:
        row = await self.conn.fetchrow(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE user_id = $1",
            self.user_id,
        )
        return _profile(row) if row else None

    async def save_profile(self, profile: Profile) -> None:
        await self.conn.execute(
            """
            INSERT INTO profiles (user_id, timezone, preferred_roles)
            VALUES ($1, $2, $3)
            ON CONFLICT (user_id) DO UPDATE SET
                timezone        = EXCLUDED.timezone,
                preferred_roles = EXCLUDED.preferred_roles,
                updated_at      = NOW()
            """,
            self.user_id,
            profile.timezone,
            list(profile.preferred_roles),
        )


class PostgresStore:
    """Store backed by an asyncpg pool."""

    conflict_errors: tuple[type[BaseException], ...] = (
        asyncpg.exceptions.SerializationError,
        asyncpg.exceptions.DeadlockDetectedError,
    )

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Sessions ====================

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
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO sessions
                    (creator_id, guild_id, channel_id, game_mode, scheduled_time,
                     timezone, description, max_rank_diff)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING {_SESSION_COLUMNS}
                """,
                creator_id,
                guild_id,
                channel_id,
                game_mode,
                scheduled_time,
                timezone,
                description,
                max_rank_diff,
            )
            return _session(row)

    async def get_session(self, session_id: int) -> Session | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = $1",
                session_id,
            )
            return _session(row) if row else None

    async def list_sessions(
        self,
        statuses: Sequence[SessionStatus],
        guild_id: str | None = None,
    ) -> list[Session]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_SESSION_COLUMNS} FROM sessions "
                "WHERE status = ANY($1) AND ($2::text IS NULL OR guild_id = $2) "
                "ORDER BY scheduled_time ASC, id ASC",
                [s.value for s in statuses],
                guild_id,
            )
            return [_session(row) for row in rows]

    async def list_queue(self, session_id: int) -> list[QueueEntry]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_QUEUE_COLUMNS} FROM session_queue "
                "WHERE session_id = $1 ORDER BY position ASC",
                session_id,
            )
            return [_queue_entry(row) for row in rows]

    async def list_roster(self, session_id: int) -> list[RosterSlot]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ROSTER_COLUMNS} FROM session_roster "
                "WHERE session_id = $1 ORDER BY id ASC",
                session_id,
            )
            return [_roster_slot(row) for row in rows]

    # ==================== Accounts ====================

    async def list_accounts(self, user_id: str) -> list[Account]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE user_id = $1 "
                "ORDER BY is_primary DESC, id ASC",
                user_id,
            )
            return [_account(row) for row in rows]

    async def get_profile(self, user_id: str) -> Profile | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE user_id = $1",
                user_id,
            )
            return _profile(row) if row else None

    # ==================== Scopes ====================

    @asynccontextmanager
    async def session_scope(self, session_id: int) -> AsyncIterator[PostgresSessionTransaction]:
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation="serializable"):
                row = await conn.fetchrow(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = $1 FOR UPDATE",
                    session_id,
                )
                if row is None:
                    raise NotFound(f"Session {session_id} not found")
                yield PostgresSessionTransaction(conn, _session(row))

    @asynccontextmanager
    async def account_scope(self, user_id: str) -> AsyncIterator[PostgresAccountTransaction]:
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation="serializable"):
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", user_id)
                yield PostgresAccountTransaction(conn, user_id)

    async def close(self) -> None:
        # Pool lifecycle belongs to DatabaseManager
        logger.debug("Postgres store released")
