"""Roster services: queue, roster, sessions, accounts and wizard state."""

from .accounts import AccountDirectory
from .commands import (
    CommandDispatcher,
    CommandResult,
    CreateAccount,
    CreateSession,
    DeleteAccount,
    DemoteFromRoster,
    EditAccountRank,
    JoinQueue,
    LeaveQueue,
    PromoteToRoster,
    RescheduleSession,
    SetPrimaryAccount,
    SetSessionStatus,
    SetupProfile,
    ToggleStreaming,
)
from .pending import PendingActionContext, PendingSelection, WizardKey, WizardKind
from .queue import QueueManager
from .roster import RoleFill, RosterEngine
from .sessions import SessionRegistry, recompute_fullness
from .signals import SessionChanged, SignalBus

__all__ = [
    "AccountDirectory",
    "CommandDispatcher",
    "CommandResult",
    "CreateAccount",
    "CreateSession",
    "DeleteAccount",
    "DemoteFromRoster",
    "EditAccountRank",
    "JoinQueue",
    "LeaveQueue",
    "PendingActionContext",
    "PendingSelection",
    "PromoteToRoster",
    "QueueManager",
    "RescheduleSession",
    "RoleFill",
    "RosterEngine",
    "SessionChanged",
    "SessionRegistry",
    "SetPrimaryAccount",
    "SetSessionStatus",
    "SetupProfile",
    "SignalBus",
    "ToggleStreaming",
    "WizardKey",
    "WizardKind",
    "recompute_fullness",
]
