"""Inbound commands from the presentation layer and their dispatcher.

Each command is a plain dataclass; ``CommandDispatcher.dispatch`` routes it to
the owning service and wraps the outcome in a ``CommandResult``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from roster.core.errors import RosterError
from roster.models import SessionStatus
from roster.services.accounts import AccountDirectory
from roster.services.queue import QueueManager
from roster.services.roster import RosterEngine
from roster.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


# ==================== Session commands ====================


@dataclass
class CreateSession:
    creator_id: str
    game_mode: str
    scheduled_time: datetime
    description: str | None = None
    max_rank_diff: int | None = None
    timezone: str | None = None
    guild_id: str | None = None
    channel_id: str | None = None


@dataclass
class SetSessionStatus:
    session_id: int
    requester_id: str
    target: SessionStatus | str


@dataclass
class RescheduleSession:
    session_id: int
    requester_id: str
    new_time: datetime
    timezone: str | None = None


# ==================== Queue / roster commands ====================


@dataclass
class JoinQueue:
    session_id: int
    user_id: str
    account_ids: list[int]
    roles: list[str] = field(default_factory=list)
    streaming: bool = False
    note: str | None = None


@dataclass
class LeaveQueue:
    session_id: int
    user_id: str


@dataclass
class ToggleStreaming:
    session_id: int
    user_id: str
    value: bool | None = None


@dataclass
class PromoteToRoster:
    session_id: int
    creator_id: str
    entry_id: int
    role: str
    account_id: int


@dataclass
class DemoteFromRoster:
    session_id: int
    requester_id: str
    user_id: str


# ==================== Account commands ====================


@dataclass
class CreateAccount:
    user_id: str
    name: str
    is_primary: bool | None = None


@dataclass
class EditAccountRank:
    user_id: str
    account_id: int
    role: str
    tier: str | None
    division: int | None = None


@dataclass
class SetPrimaryAccount:
    user_id: str
    account_id: int


@dataclass
class DeleteAccount:
    user_id: str
    account_id: int


@dataclass
class SetupProfile:
    user_id: str
    timezone: str | None = None
    preferred_roles: list[str] | None = None


@dataclass
class CommandResult:
    """Either the updated entity or the error kind of a rejected command."""

    ok: bool
    value: Any = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> CommandResult:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, message: str) -> CommandResult:
        return cls(ok=False, error=error, message=message)


class CommandDispatcher:
    """Routes commands to services and turns ``RosterError`` into failures.

    Any other exception is an infrastructure problem and propagates.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        queue: QueueManager,
        roster: RosterEngine,
        accounts: AccountDirectory,
    ) -> None:
        self.sessions = sessions
        self.queue = queue
        self.roster = roster
        self.accounts = accounts
        self._handlers: dict[type, Callable[[Any], Awaitable[Any]]] = {
            CreateSession: self._create_session,
            SetSessionStatus: lambda c: sessions.set_status(c.session_id, c.requester_id, c.target),
            RescheduleSession: lambda c: sessions.reschedule(
                c.session_id, c.requester_id, c.new_time, c.timezone
            ),
            JoinQueue: lambda c: queue.join(
                c.session_id,
                c.user_id,
                c.account_ids,
                c.roles,
                streaming=c.streaming,
                note=c.note,
            ),
            LeaveQueue: lambda c: queue.leave(c.session_id, c.user_id),
            ToggleStreaming: lambda c: queue.set_streaming(c.session_id, c.user_id, c.value),
            PromoteToRoster: lambda c: roster.promote(
                c.session_id, c.creator_id, c.entry_id, c.role, c.account_id
            ),
            DemoteFromRoster: lambda c: roster.demote(c.session_id, c.requester_id, c.user_id),
            CreateAccount: lambda c: accounts.create_account(
                c.user_id, c.name, is_primary=c.is_primary
            ),
            EditAccountRank: lambda c: accounts.edit_rank(
                c.user_id, c.account_id, c.role, c.tier, c.division
            ),
            SetPrimaryAccount: lambda c: accounts.set_primary(c.user_id, c.account_id),
            DeleteAccount: lambda c: accounts.delete_account(c.user_id, c.account_id),
            SetupProfile: lambda c: accounts.setup_profile(
                c.user_id, timezone=c.timezone, preferred_roles=c.preferred_roles
            ),
        }

    def _create_session(self, c: CreateSession) -> Awaitable[Any]:
        return self.sessions.create(
            c.creator_id,
            c.game_mode,
            c.scheduled_time,
            description=c.description,
            max_rank_diff=c.max_rank_diff,
            timezone=c.timezone,
            guild_id=c.guild_id,
            channel_id=c.channel_id,
        )

    async def dispatch(self, command: Any) -> CommandResult:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command: {type(command).__name__}")
        name = type(command).__name__
        try:
            value = await handler(command)
        except RosterError as e:
            logger.info(f"{name} rejected: {e.kind} ({e.message})")
            return CommandResult.failure(e.kind, e.message)
        logger.debug(f"{name} ok")
        return CommandResult.success(value)
