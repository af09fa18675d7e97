"""Tests for render-invalidation signals."""

import asyncio

import pytest

from conftest import CREATOR
from roster.core.errors import NotQueued
from roster.services import SessionChanged, SignalBus
from roster.services.signals import NOTIFY_CHANNEL, PgNotifyPublisher, listen_session_changes


class TestSignalBus:
    @pytest.mark.asyncio
    async def test_publish_and_unsubscribe(self):
        bus = SignalBus()
        seen = []

        async def handler(signal):
            seen.append(signal)

        unsubscribe = bus.subscribe(handler)
        await bus.publish(SessionChanged(1))
        unsubscribe()
        unsubscribe()
        await bus.publish(SessionChanged(2))
        assert seen == [SessionChanged(1)]
        assert bus.handler_count == 0

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, caplog):
        bus = SignalBus()
        seen = []

        async def broken(signal):
            raise RuntimeError("render failed")

        async def working(signal):
            seen.append(signal.session_id)

        bus.subscribe(broken)
        bus.subscribe(working)
        await bus.publish(SessionChanged(3))
        assert seen == [3]
        assert "handler failed" in caplog.text

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        bus = SignalBus()

        async def cancelled(signal):
            raise asyncio.CancelledError()

        bus.subscribe(cancelled)
        with pytest.raises(asyncio.CancelledError):
            await bus.publish(SessionChanged(4))


class TestServiceSignals:
    @pytest.mark.asyncio
    async def test_one_signal_per_committed_mutation(
        self, queue, roster, sessions, session_5v5, make_player, signals
    ):
        account = await make_player("u1", Tank=("Gold", 1))
        signals.clear()

        entry = await queue.join(session_5v5.id, "u1", [account.id], ["Tank"])
        await queue.set_streaming(session_5v5.id, "u1")
        await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        await roster.demote(session_5v5.id, CREATOR, "u1")
        await sessions.set_status(session_5v5.id, CREATOR, "closed")
        assert signals == [session_5v5.id] * 5

    @pytest.mark.asyncio
    async def test_rejected_mutation_is_silent(self, queue, session_5v5, signals):
        signals.clear()
        with pytest.raises(NotQueued):
            await queue.leave(session_5v5.id, "u1")
        assert signals == []

    @pytest.mark.asyncio
    async def test_handler_sees_committed_state(self, bus, queue, session_5v5, make_player):
        account = await make_player("u1")
        observed = []

        async def redraw(signal):
            observed.append([e.user_id for e in await queue.list_queue(signal.session_id)])

        bus.subscribe(redraw)
        await queue.join(session_5v5.id, "u1", [account.id], ["Tank"])
        assert observed == [["u1"]]


class FakeListenConnection:
    def __init__(self):
        self.listeners = {}
        self.executed = []

    async def add_listener(self, channel, callback):
        self.listeners[channel] = callback

    async def remove_listener(self, channel, callback):
        self.listeners.pop(channel, None)

    async def execute(self, sql, *args):
        self.executed.append((sql, args))

    def is_closed(self):
        return False


class FakeListenPool:
    def __init__(self):
        self.conn = FakeListenConnection()
        self.released = 0

    def acquire(self):
        return _Acquire(self.conn)

    async def release(self, conn):
        self.released += 1


class _Acquire:
    """Awaitable and async-context acquire, like asyncpg's."""

    def __init__(self, conn):
        self.conn = conn

    def __await__(self):
        async def _get():
            return self.conn

        return _get().__await__()

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc_info):
        return None


class TestPostgresSignals:
    @pytest.mark.asyncio
    async def test_publisher_sends_notify(self):
        pool = FakeListenPool()
        await PgNotifyPublisher(pool)(SessionChanged(9))
        assert pool.conn.executed == [("SELECT pg_notify($1, $2)", (NOTIFY_CHANNEL, "9"))]

    @pytest.mark.asyncio
    async def test_listener_forwards_and_shuts_down(self):
        pool = FakeListenPool()
        received = []

        async def handler(signal):
            received.append(signal.session_id)

        task = asyncio.create_task(listen_session_changes(pool, handler, keepalive_interval=60))
        for _ in range(10):
            await asyncio.sleep(0)
            if NOTIFY_CHANNEL in pool.conn.listeners:
                break

        callback = pool.conn.listeners[NOTIFY_CHANNEL]
        callback(pool.conn, 1, NOTIFY_CHANNEL, "12")
        callback(pool.conn, 1, NOTIFY_CHANNEL, "not-a-number")
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert received == [12]

        task.cancel()
        await task
        assert pool.released == 1
        assert NOTIFY_CHANNEL not in pool.conn.listeners

    @pytest.mark.asyncio
    async def test_listener_logs_handler_failure(self, caplog):
        pool = FakeListenPool()
        received = []

        async def handler(signal):
            if signal.session_id == 1:
                raise RuntimeError("redraw failed")
            received.append(signal.session_id)

        task = asyncio.create_task(listen_session_changes(pool, handler, keepalive_interval=60))
        for _ in range(10):
            await asyncio.sleep(0)
            if NOTIFY_CHANNEL in pool.conn.listeners:
                break

        callback = pool.conn.listeners[NOTIFY_CHANNEL]
        callback(pool.conn, 1, NOTIFY_CHANNEL, "1")
        callback(pool.conn, 1, NOTIFY_CHANNEL, "2")
        for _ in range(3):
            await asyncio.sleep(0)

        assert received == [2]
        assert "handler failed" in caplog.text
        assert "redraw failed" in caplog.text

        task.cancel()
        await task

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_handlers(self):
        pool = FakeListenPool()
        started = asyncio.Event()
        cancelled = []

        async def handler(signal):
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.append(signal.session_id)
                raise

        task = asyncio.create_task(listen_session_changes(pool, handler, keepalive_interval=60))
        for _ in range(10):
            await asyncio.sleep(0)
            if NOTIFY_CHANNEL in pool.conn.listeners:
                break

        pool.conn.listeners[NOTIFY_CHANNEL](pool.conn, 1, NOTIFY_CHANNEL, "7")
        await asyncio.wait_for(started.wait(), timeout=1)

        task.cancel()
        await task
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert cancelled == [7]
