"""Data models for the sessions table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SessionStatus(str, Enum):
    OPEN = "open"
    FULL = "full"
    CLOSED = "closed"
    CANCELLED = "cancelled"


@dataclass
class Session:
    """One scheduled match instance."""

    id: int
    creator_id: str
    game_mode: str
    scheduled_time: datetime  # always UTC-aware
    timezone: str
    status: SessionStatus = SessionStatus.OPEN
    description: str | None = None
    max_rank_diff: int | None = None  # None = no filter
    guild_id: str | None = None
    channel_id: str | None = None
    message_id: str | None = None
    created_at: datetime | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.status is SessionStatus.CANCELLED

    @property
    def is_active(self) -> bool:
        return self.status in (SessionStatus.OPEN, SessionStatus.FULL)
