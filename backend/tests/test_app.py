"""Tests for application wiring on the in-memory store."""

import json

import pytest

from conftest import CREATOR, KICKOFF
from roster.app import RosterApp
from roster.core.config import Settings
from roster.repositories import MemoryStore
from roster.services import CreateSession, JoinQueue


class TestRosterApp:
    @pytest.mark.asyncio
    async def test_memory_app_round_trip(self):
        settings = Settings(_env_file=None, database_url="")
        seen = []

        async with await RosterApp.connect(settings) as app:
            assert isinstance(app.store, MemoryStore)

            async def redraw(signal):
                seen.append(signal.session_id)

            app.bus.subscribe(redraw)
            session = (await app.dispatcher.dispatch(CreateSession(CREATOR, "6v6", KICKOFF))).value
            account = await app.accounts.create_account("u1", "Main")
            result = await app.dispatcher.dispatch(JoinQueue(session.id, "u1", [account.id]))
            assert result.ok

        assert seen == [session.id, session.id]
        assert app._tasks == []

    @pytest.mark.asyncio
    async def test_custom_game_modes(self, tmp_path):
        path = tmp_path / "modes.json"
        path.write_text(
            json.dumps({"modes": [{"id": "3v3", "name": "Trios", "roles": {"Any": 3}}]}),
            encoding="utf-8",
        )
        settings = Settings(_env_file=None, database_url="", game_modes_file=path)
        app = await RosterApp.connect(settings)
        try:
            session = await app.sessions.create(CREATOR, "3v3", KICKOFF)
            assert app.sessions.mode_of(session).total == 3
        finally:
            await app.close()

    @pytest.mark.asyncio
    async def test_pending_uses_settings(self):
        settings = Settings(_env_file=None, database_url="", pending_action_ttl=42)
        app = RosterApp(settings, MemoryStore())
        assert app.pending.ttl == 42
        await app.close()

    @pytest.mark.asyncio
    async def test_remote_signals_need_database(self):
        app = RosterApp(Settings(_env_file=None, database_url=""), MemoryStore())
        with pytest.raises(RuntimeError):
            app.listen_remote(lambda signal: None)
        await app.close()
