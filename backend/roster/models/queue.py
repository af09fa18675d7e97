"""Data models for session_queue and session_roster tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class QueueEntry:
    """A user waiting to be picked for a session."""

    id: int
    session_id: int
    user_id: str
    account_ids: list[int] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    is_streaming: bool = False
    note: str | None = None
    position: int = 0  # display order only
    joined_at: datetime | None = None


@dataclass
class RosterSlot:
    """A user confirmed into a role on a session's team."""

    id: int
    session_id: int
    user_id: str
    account_id: int
    role: str
    selected_by: str
    is_streaming: bool = False
    selected_at: datetime | None = None
