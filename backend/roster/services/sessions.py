"""Session registry: creation, lifecycle status and schedule."""

from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from roster.core.errors import (
    Forbidden,
    InvalidRank,
    InvalidSchedule,
    InvalidStatusTransition,
    NotFound,
    SessionCancelled,
)
from roster.models import GameMode, GameModeCatalog, Session, SessionStatus
from roster.repositories import RosterStore, SessionTransaction
from roster.services.base import BaseService
from roster.services.signals import SessionChanged, SignalBus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (SessionStatus.OPEN, SessionStatus.FULL)

# Targets a creator may request directly; FULL is only ever derived
CREATOR_TARGETS = (SessionStatus.OPEN, SessionStatus.CLOSED, SessionStatus.CANCELLED)


def recompute_fullness(status: SessionStatus, roster_count: int, total: int) -> SessionStatus:
    """Derive OPEN/FULL from roster size. CLOSED and CANCELLED are never overridden."""
    if status is SessionStatus.OPEN and roster_count >= total:
        return SessionStatus.FULL
    if status is SessionStatus.FULL and roster_count < total:
        return SessionStatus.OPEN
    return status


def normalize_schedule(scheduled_time: datetime, tz_name: str) -> datetime:
    """Return ``scheduled_time`` as an aware UTC instant.

    Naive datetimes are read as wall-clock time in ``tz_name``.
    """
    if not isinstance(scheduled_time, datetime):
        raise InvalidSchedule("Scheduled time must be a datetime")
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidSchedule(f"Unknown timezone: {tz_name}") from e
    if scheduled_time.tzinfo is None:
        scheduled_time = scheduled_time.replace(tzinfo=zone)
    try:
        return scheduled_time.astimezone(dt_timezone.utc)
    except (OverflowError, ValueError) as e:
        raise InvalidSchedule(f"Scheduled time out of range: {scheduled_time}") from e


def ensure_not_cancelled(session: Session) -> None:
    if session.is_cancelled:
        raise SessionCancelled(f"Session {session.id} has been cancelled")


def ensure_creator(session: Session, requester_id: str) -> None:
    if session.creator_id != requester_id:
        raise Forbidden("Only the session creator can do that")


class SessionRegistry(BaseService):
    """Owns session metadata and lifecycle status."""

    def __init__(
        self,
        store: RosterStore,
        catalog: GameModeCatalog,
        bus: SignalBus,
        *,
        default_timezone: str = "America/New_York",
        retries: int = 3,
        retry_delay: float = 0.05,
    ) -> None:
        super().__init__(store, catalog, bus, retries=retries, retry_delay=retry_delay)
        self.default_timezone = default_timezone

    # ==================== Reads ====================

    async def get(self, session_id: int) -> Session:
        session = await self.store.get_session(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        return session

    async def list_active(self, guild_id: str | None = None) -> list[Session]:
        """Open and full sessions, soonest first."""
        return await self.store.list_sessions(ACTIVE_STATUSES, guild_id)

    def mode_of(self, session: Session) -> GameMode:
        return self.catalog.get(session.game_mode)

    async def _resolve_timezone(self, creator_id: str, tz_name: str | None) -> str:
        if tz_name:
            return tz_name
        profile = await self.store.get_profile(creator_id)
        if profile and profile.timezone:
            return profile.timezone
        return self.default_timezone

    # ==================== Mutations ====================

    async def create(
        self,
        creator_id: str,
        game_mode: str,
        scheduled_time: datetime,
        *,
        description: str | None = None,
        max_rank_diff: int | None = None,
        timezone: str | None = None,
        guild_id: str | None = None,
        channel_id: str | None = None,
    ) -> Session:
        """Create an open session."""
        self.catalog.get(game_mode)
        if max_rank_diff is not None and max_rank_diff < 0:
            raise InvalidRank("Max rank difference cannot be negative")
        tz_name = await self._resolve_timezone(creator_id, timezone)
        when = normalize_schedule(scheduled_time, tz_name)
        description = (description or "").strip() or None

        session = await self.store.create_session(
            creator_id,
            game_mode,
            when,
            tz_name,
            description=description,
            max_rank_diff=max_rank_diff,
            guild_id=guild_id,
            channel_id=channel_id,
        )
        logger.info(
            f"Session {session.id} created by {creator_id}: {game_mode} at {when.isoformat()}"
        )
        await self.bus.publish(SessionChanged(session.id))
        return session

    async def set_status(
        self,
        session_id: int,
        requester_id: str,
        target: SessionStatus | str,
    ) -> Session:
        """Creator toggles OPEN/CLOSED or cancels. CANCELLED is terminal."""
        try:
            target = SessionStatus(target)
        except ValueError as e:
            raise InvalidStatusTransition(f"Unknown session status: {target}") from e

        async def body(tx: SessionTransaction) -> Session:
            session = tx.session
            ensure_not_cancelled(session)
            ensure_creator(session, requester_id)
            if target not in CREATOR_TARGETS:
                raise InvalidStatusTransition(f"Cannot set a session to {target.value}")

            if target is SessionStatus.CANCELLED:
                dropped_queue = await tx.clear_queue()
                dropped_roster = await tx.clear_roster()
                logger.info(
                    f"Session {session_id} cancelled "
                    f"(dropped {dropped_queue} queued, {dropped_roster} rostered)"
                )
                session.status = SessionStatus.CANCELLED
            elif target is SessionStatus.CLOSED:
                session.status = SessionStatus.CLOSED
            else:
                # Reopening lands on FULL if the roster is already complete
                roster = await tx.list_roster()
                session.status = recompute_fullness(
                    SessionStatus.OPEN, len(roster), self.mode_of(session).total
                )
            await tx.save_session(session)
            return session

        session = await self._in_session(session_id, body)
        logger.info(f"Session {session_id} status -> {session.status.value}")
        return session

    async def reschedule(
        self,
        session_id: int,
        requester_id: str,
        new_time: datetime,
        timezone: str | None = None,
    ) -> Session:
        """Move the session; queue and roster are untouched."""

        async def body(tx: SessionTransaction) -> Session:
            session = tx.session
            ensure_not_cancelled(session)
            ensure_creator(session, requester_id)
            tz_name = timezone or session.timezone
            session.scheduled_time = normalize_schedule(new_time, tz_name)
            session.timezone = tz_name
            await tx.save_session(session)
            return session

        session = await self._in_session(session_id, body)
        logger.info(f"Session {session_id} rescheduled to {session.scheduled_time.isoformat()}")
        return session

    async def attach_message(self, session_id: int, message_id: str) -> Session:
        """Record the presentation layer's message handle."""

        async def body(tx: SessionTransaction) -> Session:
            session = tx.session
            session.message_id = message_id
            await tx.save_session(session)
            return session

        return await self._in_session(session_id, body, notify=False)
