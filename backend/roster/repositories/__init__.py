"""Storage layer for the roster engine."""

from .base import AccountTransaction, RosterStore, SessionTransaction, order_accounts
from .memory import MemoryStore
from .postgres import PostgresStore

__all__ = [
    "AccountTransaction",
    "MemoryStore",
    "PostgresStore",
    "RosterStore",
    "SessionTransaction",
    "order_accounts",
]
