"""Error kinds surfaced by the roster services.

Every error is an expected, caller-recoverable condition. ``kind`` is the
stable identifier the presentation layer maps to a user-facing message.
"""

from __future__ import annotations


class RosterError(Exception):
    """Base class for all roster engine errors."""

    kind: str = "RosterError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class AlreadyQueued(RosterError):
    kind = "AlreadyQueued"


class AlreadyRostered(RosterError):
    kind = "AlreadyRostered"


class NotQueued(RosterError):
    kind = "NotQueued"


class NotParticipating(RosterError):
    kind = "NotParticipating"


class SessionNotJoinable(RosterError):
    kind = "SessionNotJoinable"


class SessionCancelled(RosterError):
    kind = "SessionCancelled"


class Forbidden(RosterError):
    kind = "Forbidden"


class InvalidStatusTransition(Forbidden):
    """Requested status is not a creator-settable target."""

    kind = "InvalidStatusTransition"


class AccountInUse(Forbidden):
    """Account is referenced by a roster slot and cannot be deleted."""

    kind = "AccountInUse"


class RoleFull(RosterError):
    kind = "RoleFull"


class IneligibleAccount(RosterError):
    kind = "IneligibleAccount"


class NotFound(RosterError):
    kind = "NotFound"


class InvalidGameMode(RosterError):
    kind = "InvalidGameMode"


class InvalidRole(RosterError):
    kind = "InvalidRole"


class InvalidRank(RosterError):
    kind = "InvalidRank"


class InvalidSchedule(RosterError):
    kind = "InvalidSchedule"


class DuplicateAccount(RosterError):
    kind = "DuplicateAccount"


class ConflictRetryExhausted(RosterError):
    """Concurrent writers kept invalidating a serializable transaction."""

    kind = "ConflictRetryExhausted"


class InvalidAccountName(RosterError):
    kind = "InvalidAccountName"


class InvalidTimezone(RosterError):
    kind = "InvalidTimezone"
