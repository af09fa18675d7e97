"""Data models for accounts and profiles tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from roster.models.rank import RoleRank


@dataclass
class Account:
    """A named in-game identity owned by a user."""

    id: int
    user_id: str
    name: str
    ranks: dict[str, RoleRank] = field(default_factory=dict)
    is_primary: bool = False
    created_at: datetime | None = None

    def rank_for(self, role: str) -> RoleRank | None:
        return self.ranks.get(role)

    def best_rank(self) -> RoleRank | None:
        """Highest rank across all roles, or None when unranked."""
        if not self.ranks:
            return None
        return max(self.ranks.values(), key=lambda r: r.skill_value)


@dataclass
class Profile:
    """Per-user scheduling preferences."""

    user_id: str
    timezone: str | None = None
    preferred_roles: list[str] = field(default_factory=list)
    created_at: datetime | None = None
