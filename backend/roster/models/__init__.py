"""Data models for the roster engine."""

from .account import Account, Profile
from .game_mode import ANY_ROLE, DEFAULT_GAME_MODES, GameMode, GameModeCatalog
from .queue import QueueEntry, RosterSlot
from .rank import RANK_TIERS, RoleRank, rank_distance
from .session import Session, SessionStatus

__all__ = [
    "ANY_ROLE",
    "Account",
    "DEFAULT_GAME_MODES",
    "GameMode",
    "GameModeCatalog",
    "Profile",
    "QueueEntry",
    "RANK_TIERS",
    "RoleRank",
    "RosterSlot",
    "Session",
    "SessionStatus",
    "rank_distance",
]
