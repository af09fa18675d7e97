"""
Pytest fixtures for roster engine tests.

Provides an in-memory store, the default game mode catalog and services
wired together the way RosterApp wires them.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from roster.models import GameModeCatalog
from roster.repositories import MemoryStore
from roster.services import (
    AccountDirectory,
    CommandDispatcher,
    QueueManager,
    RosterEngine,
    SessionChanged,
    SessionRegistry,
    SignalBus,
)

CREATOR = "creator"
KICKOFF = datetime(2030, 1, 5, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def memory_store():
    """In-memory roster store for testing."""
    return MemoryStore()


@pytest.fixture
def catalog():
    return GameModeCatalog()


@pytest.fixture
def bus():
    return SignalBus()


@pytest.fixture
def signals(bus):
    """Session ids of every SessionChanged published, in order."""
    received: list[int] = []

    async def record(signal: SessionChanged) -> None:
        received.append(signal.session_id)

    bus.subscribe(record)
    return received


@pytest.fixture
def accounts(memory_store, catalog, bus):
    return AccountDirectory(memory_store, catalog, bus)


@pytest.fixture
def sessions(memory_store, catalog, bus):
    return SessionRegistry(memory_store, catalog, bus, default_timezone="America/New_York")


@pytest.fixture
def queue(memory_store, catalog, bus):
    return QueueManager(memory_store, catalog, bus)


@pytest.fixture
def roster(memory_store, catalog, bus):
    return RosterEngine(memory_store, catalog, bus)


@pytest.fixture
def dispatcher(sessions, queue, roster, accounts):
    return CommandDispatcher(sessions, queue, roster, accounts)


@pytest.fixture
def make_player(accounts):
    """Factory: create an account for ``user_id`` with ``{role: (tier, division)}`` ranks."""

    async def _make(user_id: str, name: str | None = None, **ranks):
        account = await accounts.create_account(user_id, name or f"{user_id}-main")
        for role, (tier, division) in ranks.items():
            account = await accounts.edit_rank(user_id, account.id, role, tier, division)
        return account

    return _make


@pytest_asyncio.fixture
async def session_5v5(sessions):
    """Open 5v5 session owned by CREATOR."""
    return await sessions.create(CREATOR, "5v5", KICKOFF)


@pytest_asyncio.fixture
async def session_6v6(sessions):
    """Open 'Any'-role 6v6 session owned by CREATOR."""
    return await sessions.create(CREATOR, "6v6", KICKOFF)
