"""Render-invalidation signals.

``SignalBus`` fans ``SessionChanged`` out to in-process subscribers once a
mutation has committed. ``PgNotifyPublisher`` and ``listen_session_changes``
carry the same signal across processes over PostgreSQL LISTEN/NOTIFY.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import asyncpg

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "session_changed"


@dataclass(frozen=True)
class SessionChanged:
    """A session's queue, roster or status changed; re-read and re-render."""

    session_id: int


SignalHandler = Callable[[SessionChanged], Awaitable[None]]


class SignalBus:
    """In-process publish/subscribe for ``SessionChanged``."""

    def __init__(self) -> None:
        self._handlers: list[SignalHandler] = []

    def subscribe(self, handler: SignalHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, signal: SessionChanged) -> None:
        """Deliver to every handler; a failing handler does not stop the rest.

        The mutation is already committed, so handler errors are logged, not raised.
        """
        for handler in list(self._handlers):
            try:
                await handler(signal)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"SessionChanged handler failed for session {signal.session_id}")

    @property
    def handler_count(self) -> int:
        return len(self._handlers)


class PgNotifyPublisher:
    """Forward ``SessionChanged`` to ``NOTIFY session_changed, '<id>'``."""

    def __init__(self, pool: asyncpg.Pool, channel: str = NOTIFY_CHANNEL) -> None:
        self.pool = pool
        self.channel = channel

    async def __call__(self, signal: SessionChanged) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_notify($1, $2)", self.channel, str(signal.session_id))


async def listen_session_changes(
    pool: asyncpg.Pool,
    handler: SignalHandler,
    *,
    channel: str = NOTIFY_CHANNEL,
    keepalive_interval: int = 30,
    reconnect_delay: int = 10,
) -> None:
    """Listen for ``SessionChanged`` notifications with auto-reconnect.

    Runs until cancelled. Payloads that are not integers are ignored.
    """
    # Handler tasks in flight, held until done
    delivering: set[asyncio.Task] = set()

    def _delivered(task: asyncio.Task) -> None:
        delivering.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"SessionChanged handler failed: {task.exception()!r}")

    def _on_notify(_conn: asyncpg.Connection, _pid: int, _channel: str, payload: str) -> None:
        try:
            session_id = int(payload)
        except ValueError:
            logger.warning(f"Ignoring malformed {channel} payload: {payload!r}")
            return
        task = asyncio.get_running_loop().create_task(handler(SessionChanged(session_id)))
        delivering.add(task)
        task.add_done_callback(_delivered)

    while True:
        connection: asyncpg.Connection | None = None
        try:
            connection = await pool.acquire()
            await connection.add_listener(channel, _on_notify)
            logger.info(f"PostgreSQL LISTEN active on '{channel}' channel")
            while True:
                await asyncio.sleep(keepalive_interval)
                await connection.execute("SELECT 1")
        except asyncio.CancelledError:
            logger.info(f"PostgreSQL LISTEN '{channel}' shutting down...")
            for task in list(delivering):
                task.cancel()
            break
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Error in LISTEN '{channel}': {e}")
            logger.warning(f"Reconnecting LISTEN '{channel}' in {reconnect_delay}s...")
            await asyncio.sleep(reconnect_delay)
        finally:
            if connection is not None:
                if not connection.is_closed():
                    await connection.remove_listener(channel, _on_notify)
                await pool.release(connection)
