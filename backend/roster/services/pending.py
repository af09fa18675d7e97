"""Pending multi-step selections ("wizards") awaiting their final confirmation.

Each wizard is keyed by ``WizardKey(user_id, session_id, kind)`` and expires
after a period of inactivity. Uses cachetools.TTLCache; nothing is persisted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any

from cachetools import TTLCache  # type: ignore[import-untyped]

from roster.core.errors import NotFound

logger = logging.getLogger(__name__)

# Fields merged key-by-key by ``update``; every other field is replaced
_MERGED_FIELDS = ("role_accounts", "extras")


class WizardKind(str, Enum):
    JOIN = "join"
    CREATE_SESSION = "create_session"
    EDIT_RANK = "edit_rank"


@dataclass(frozen=True)
class WizardKey:
    user_id: str
    session_id: int | None
    kind: WizardKind


@dataclass
class PendingSelection:
    """Choices made so far in one wizard."""

    account_ids: list[int] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    role_accounts: dict[str, int] = field(default_factory=dict)
    tier: str | None = None
    division: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)


_FIELD_NAMES = frozenset(f.name for f in fields(PendingSelection))


class PendingActionContext:
    """Short-lived, per-user wizard state with an inactivity timeout."""

    def __init__(
        self,
        ttl: float = 600.0,
        maxsize: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def start(self, key: WizardKey, selection: PendingSelection | None = None) -> PendingSelection:
        """Begin (or restart) a wizard. An existing one under ``key`` is replaced."""
        if key in self._cache:
            logger.debug(f"Restarting {key.kind.value} wizard for {key.user_id}")
        selection = selection or PendingSelection()
        self._cache[key] = selection
        return selection

    def get(self, key: WizardKey) -> PendingSelection | None:
        """Current selection, or None if never started or expired. Refreshes the timeout."""
        selection = self._cache.get(key)
        if selection is not None:
            self._cache[key] = selection
        return selection

    def update(self, key: WizardKey, **changes: Any) -> PendingSelection:
        """Merge ``changes`` into a live selection. Raises ``NotFound`` if it expired."""
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise TypeError(f"Unknown selection fields: {sorted(unknown)}")
        selection = self._cache.get(key)
        if selection is None:
            raise NotFound("That selection has expired, please start again")
        merged = {
            name: {**getattr(selection, name), **value} if name in _MERGED_FIELDS else value
            for name, value in changes.items()
        }
        selection = replace(selection, **merged)
        self._cache[key] = selection
        return selection

    def complete(self, key: WizardKey) -> PendingSelection:
        """Take the final selection out. Raises ``NotFound`` if it expired."""
        selection = self._cache.pop(key, None)
        if selection is None:
            raise NotFound("That selection has expired, please start again")
        return selection

    def cancel(self, key: WizardKey) -> bool:
        return self._cache.pop(key, None) is not None

    def sweep(self) -> None:
        """Drop expired wizards now instead of on next access."""
        self._cache.expire()

    def __len__(self) -> int:
        return len(self._cache)
