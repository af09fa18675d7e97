"""Rank ladder: ordered tiers, their divisions, and per-role rank values."""

from __future__ import annotations

from dataclasses import dataclass

from roster.core.errors import InvalidRank

# Lowest tier first. Divisions are listed worst-to-best (5 is the bottom of a tier).
RANK_TIERS: dict[str, tuple[int, ...]] = {
    "Bronze": (5, 4, 3, 2, 1),
    "Silver": (5, 4, 3, 2, 1),
    "Gold": (5, 4, 3, 2, 1),
    "Platinum": (5, 4, 3, 2, 1),
    "Diamond": (5, 4, 3, 2, 1),
    "Master": (5, 4, 3, 2, 1),
    "Grandmaster": (5, 4, 3, 2, 1),
    "Champion": (1,),
}


def _build_offsets() -> dict[str, int]:
    offsets: dict[str, int] = {}
    running = 0
    for tier, divisions in RANK_TIERS.items():
        offsets[tier] = running
        running += len(divisions)
    return offsets


_TIER_OFFSETS = _build_offsets()


@dataclass(frozen=True)
class RoleRank:
    """A (tier, division) pair for one role on one account."""

    tier: str
    division: int

    def __post_init__(self) -> None:
        divisions = RANK_TIERS.get(self.tier)
        if divisions is None:
            raise InvalidRank(f"Unknown rank tier: {self.tier}")
        if self.division not in divisions:
            raise InvalidRank(f"{self.tier} has no division {self.division}")

    @property
    def skill_value(self) -> int:
        """Position on the ladder, one unit per division (Bronze 5 == 0)."""
        divisions = RANK_TIERS[self.tier]
        return _TIER_OFFSETS[self.tier] + divisions.index(self.division)

    def to_dict(self) -> dict[str, str | int]:
        return {"tier": self.tier, "division": self.division}

    @classmethod
    def from_dict(cls, data: dict) -> RoleRank:
        return cls(tier=data["tier"], division=int(data["division"]))

    def __str__(self) -> str:
        return f"{self.tier} {self.division}"


def rank_distance(a: RoleRank, b: RoleRank) -> int:
    """Number of divisions separating two ranks."""
    return abs(a.skill_value - b.skill_value)
