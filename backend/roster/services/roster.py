"""Roster engine: manual promotion from the queue, demotion, team composition."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from roster.core.errors import (
    AlreadyRostered,
    IneligibleAccount,
    NotFound,
    RoleFull,
)
from roster.models import (
    Account,
    GameMode,
    QueueEntry,
    RoleRank,
    RosterSlot,
    Session,
    rank_distance,
)
from roster.repositories import SessionTransaction
from roster.services.base import BaseService
from roster.services.sessions import ensure_creator, ensure_not_cancelled, recompute_fullness

logger = logging.getLogger(__name__)

AccountLookup = Callable[[str], Awaitable[list[Account]]]


@dataclass(frozen=True)
class RoleFill:
    """Filled vs. available slots for one role of a session."""

    role: str
    filled: int
    capacity: int

    @property
    def is_full(self) -> bool:
        return self.filled >= self.capacity

    @property
    def open_slots(self) -> int:
        return max(0, self.capacity - self.filled)


def _rank_for(account: Account | None, role: str, mode: GameMode) -> RoleRank | None:
    """Rank compared by the rank filter; ``Any`` modes compare best ranks."""
    if account is None:
        return None
    return account.best_rank() if mode.is_any else account.rank_for(role)


class RosterEngine(BaseService):
    """Moves queue entries into capacity-bounded roster slots on the creator's say."""

    # ==================== Eligibility ====================

    async def _rostered_ranks(
        self, list_accounts: AccountLookup, roster: Sequence[RosterSlot], mode: GameMode
    ) -> list[RoleRank]:
        ranks: list[RoleRank] = []
        for slot in roster:
            accounts = await list_accounts(slot.user_id)
            account = next((a for a in accounts if a.id == slot.account_id), None)
            rank = _rank_for(account, slot.role, mode)
            if rank is not None:
                ranks.append(rank)
        return ranks

    async def eligible_accounts(
        self,
        entry: QueueEntry,
        role: str,
        *,
        mode: GameMode,
        roster: Sequence[RosterSlot] = (),
        max_rank_diff: int | None = None,
        tx: SessionTransaction | None = None,
    ) -> list[Account]:
        """Candidate accounts of ``entry`` that may fill ``role``.

        Reads the directory at call time, so rank edits made after queueing
        count and deleted accounts drop out. Primary first, then the order the
        player declared them in.

        Inside a mutation pass ``tx`` so account reads share its connection
        and snapshot.
        """
        list_accounts = tx.list_accounts if tx is not None else self.store.list_accounts
        owned = {a.id: a for a in await list_accounts(entry.user_id)}
        candidates = [owned[i] for i in entry.account_ids if i in owned]
        if not mode.is_any:
            candidates = [a for a in candidates if a.rank_for(role) is not None]

        if max_rank_diff is not None and roster:
            rostered = await self._rostered_ranks(list_accounts, roster, mode)
            if rostered:
                kept = []
                for account in candidates:
                    rank = _rank_for(account, role, mode)
                    if rank is None or all(
                        rank_distance(rank, other) <= max_rank_diff for other in rostered
                    ):
                        kept.append(account)
                candidates = kept

        declared = {account_id: i for i, account_id in enumerate(entry.account_ids)}
        return sorted(candidates, key=lambda a: (not a.is_primary, declared[a.id]))

    # ==================== Reads ====================

    async def list_roster(self, session_id: int) -> list[RosterSlot]:
        if await self.store.get_session(session_id) is None:
            raise NotFound(f"Session {session_id} not found")
        return await self.store.list_roster(session_id)

    async def composition(self, session_id: int) -> list[RoleFill]:
        """Per-role fill counts in the mode's role order."""
        session = await self.store.get_session(session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        mode = self.catalog.get(session.game_mode)
        roster = await self.store.list_roster(session_id)
        if mode.is_any:
            return [RoleFill(role, len(roster), cap) for role, cap in mode.roles.items()]
        counts = Counter(slot.role for slot in roster)
        return [RoleFill(role, counts.get(role, 0), cap) for role, cap in mode.roles.items()]

    # ==================== Mutations ====================

    async def promote(
        self,
        session_id: int,
        creator_id: str,
        entry_id: int,
        role: str,
        account_id: int,
    ) -> RosterSlot:
        """Move one queue entry into ``role`` using ``account_id``.

        The entry is removed and the slot inserted in the same scope, so a
        second promotion of the same entry finds nothing and fails with
        ``NotFound``.
        """

        async def body(tx: SessionTransaction) -> RosterSlot:
            session = tx.session
            ensure_not_cancelled(session)
            ensure_creator(session, creator_id)
            mode = self.catalog.get(session.game_mode)
            mode.validate_role(role)

            entry = await tx.get_queue_entry(entry_id)
            if entry is None:
                raise NotFound(f"Queue entry {entry_id} not found in session {session_id}")
            if await tx.find_roster_slot(entry.user_id):
                raise AlreadyRostered(f"{entry.user_id} is already on the team")

            roster = await tx.list_roster()
            if mode.is_role_full(role, Counter(slot.role for slot in roster)):
                raise RoleFull(f"{role} is already full")

            eligible = await self.eligible_accounts(
                entry,
                role,
                mode=mode,
                roster=roster,
                max_rank_diff=session.max_rank_diff,
                tx=tx,
            )
            if account_id not in {a.id for a in eligible}:
                raise IneligibleAccount(f"Account {account_id} cannot play {role} here")

            await tx.delete_queue_entry(entry.id)
            slot = await tx.add_roster_slot(
                entry.user_id, account_id, role, entry.is_streaming, creator_id
            )
            await self._refresh_status(tx, session, mode, len(roster) + 1)
            return slot

        slot = await self._in_session(session_id, body)
        logger.info(
            f"Session {session_id}: {slot.user_id} promoted to {slot.role} "
            f"with account {slot.account_id}"
        )
        return slot

    async def demote(self, session_id: int, requester_id: str, user_id: str) -> RosterSlot:
        """Remove ``user_id`` from the roster. The user is not put back in the queue."""

        async def body(tx: SessionTransaction) -> RosterSlot:
            session = tx.session
            ensure_not_cancelled(session)
            if requester_id != user_id:
                ensure_creator(session, requester_id)
            slot = await tx.find_roster_slot(user_id)
            if slot is None:
                raise NotFound(f"{user_id} is not on the roster of session {session_id}")
            await tx.delete_roster_slot(slot.id)
            remaining = len(await tx.list_roster())
            await self._refresh_status(tx, session, self.catalog.get(session.game_mode), remaining)
            return slot

        slot = await self._in_session(session_id, body)
        logger.info(f"Session {session_id}: {user_id} removed from {slot.role} by {requester_id}")
        return slot

    remove_from_roster = demote

    @staticmethod
    async def _refresh_status(
        tx: SessionTransaction, session: Session, mode: GameMode, roster_count: int
    ) -> None:
        status = recompute_fullness(session.status, roster_count, mode.total)
        if status is not session.status:
            logger.debug(f"Session {session.id} status {session.status.value} -> {status.value}")
            session.status = status
            await tx.save_session(session)
