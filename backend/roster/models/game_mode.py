"""Game mode configuration: role names and per-role capacity."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from roster.core.errors import InvalidGameMode, InvalidRole

logger = logging.getLogger(__name__)

ANY_ROLE = "Any"


@dataclass(frozen=True)
class GameMode:
    """A playable mode and its team composition.

    ``roles`` maps role name to capacity, in display order. The special role
    ``Any`` means "no role distinction" and cannot be mixed with named roles.
    """

    id: str
    name: str
    roles: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.roles:
            raise InvalidGameMode(f"Game mode {self.id!r} has no roles")
        if ANY_ROLE in self.roles and len(self.roles) > 1:
            raise InvalidGameMode(f"Game mode {self.id!r} mixes 'Any' with named roles")
        for role, capacity in self.roles.items():
            if capacity <= 0:
                raise InvalidGameMode(f"Role {role!r} in {self.id!r} must have capacity > 0")
        # Freeze the ordering the caller gave us
        object.__setattr__(self, "roles", dict(self.roles))

    @property
    def total(self) -> int:
        return sum(self.roles.values())

    @property
    def is_any(self) -> bool:
        return ANY_ROLE in self.roles

    @property
    def role_names(self) -> list[str]:
        return list(self.roles)

    def capacity(self, role: str) -> int:
        if role not in self.roles:
            raise InvalidRole(f"{role!r} is not a role in {self.name}")
        return self.roles[role]

    def validate_role(self, role: str) -> str:
        self.capacity(role)
        return role

    def normalize_roles(self, roles: list[str] | tuple[str, ...] | None) -> list[str]:
        """Validate a candidate role list, keeping order and dropping duplicates.

        An empty list is only acceptable for ``Any`` modes, where it means ``Any``.
        """
        if not roles:
            if self.is_any:
                return [ANY_ROLE]
            raise InvalidRole(f"Choose at least one role for {self.name}")
        result: list[str] = []
        for role in roles:
            self.validate_role(role)
            if role not in result:
                result.append(role)
        return result

    def is_role_full(self, role: str, role_counts: Mapping[str, int]) -> bool:
        """Whether ``role`` has no room left given current roster counts."""
        if self.is_any:
            return sum(role_counts.values()) >= self.total
        return role_counts.get(role, 0) >= self.capacity(role)


DEFAULT_GAME_MODES: tuple[GameMode, ...] = (
    GameMode("5v5", "5v5 Competitive", {"Tank": 1, "DPS": 2, "Support": 2}),
    GameMode("6v6", "6v6 Classic", {ANY_ROLE: 6}),
    GameMode("Stadium", "Stadium Mode", {ANY_ROLE: 6}),
)


class GameModeCatalog:
    """Read-only lookup of game modes by id."""

    def __init__(self, modes: tuple[GameMode, ...] | list[GameMode] = DEFAULT_GAME_MODES) -> None:
        self._modes: dict[str, GameMode] = {}
        for mode in modes:
            self._add(mode)

    def _add(self, mode: GameMode) -> None:
        if mode.id in self._modes:
            raise InvalidGameMode(f"Duplicate game mode id: {mode.id}")
        self._modes[mode.id] = mode

    def get(self, mode_id: str) -> GameMode:
        mode = self._modes.get(mode_id)
        if mode is None:
            raise InvalidGameMode(f"Unknown game mode: {mode_id}")
        return mode

    def __contains__(self, mode_id: object) -> bool:
        return mode_id in self._modes

    def __iter__(self) -> Iterator[GameMode]:
        return iter(self._modes.values())

    def __len__(self) -> int:
        return len(self._modes)

    def ranked_roles(self) -> list[str]:
        """Named roles across all modes, in first-seen order. ``Any`` is never ranked."""
        roles: list[str] = []
        for mode in self._modes.values():
            for role in mode.roles:
                if role != ANY_ROLE and role not in roles:
                    roles.append(role)
        return roles

    @classmethod
    def from_file(cls, path: Path, *, include_defaults: bool = True) -> GameModeCatalog:
        """Load modes from a JSON file.

        Format::

            {"modes": [{"id": "2v2", "name": "Duos", "roles": {"Any": 2}}]}
        """
        data = json.loads(path.read_text(encoding="utf-8"))
        modes = [
            GameMode(id=item["id"], name=item.get("name", item["id"]), roles=item["roles"])
            for item in data.get("modes", [])
        ]
        if include_defaults:
            modes = list(DEFAULT_GAME_MODES) + modes
        catalog = cls(modes)
        logger.info(f"Loaded {len(catalog)} game modes from {path.name}")
        return catalog
