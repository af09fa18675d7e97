"""Tests for promotion, demotion and account eligibility."""

import pytest

from conftest import CREATOR, KICKOFF
from roster.core.errors import (
    AlreadyRostered,
    Forbidden,
    IneligibleAccount,
    InvalidRole,
    NotFound,
    RoleFull,
    SessionCancelled,
)
from roster.models import SessionStatus


async def queue_player(queue, make_player, session, user_id, roles, **ranks):
    account = await make_player(user_id, **ranks)
    entry = await queue.join(session.id, user_id, [account.id], roles)
    return entry, account


class TestFiveVersusFive:
    @pytest.mark.asyncio
    async def test_tank_fills_its_single_slot(self, queue, roster, sessions, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        slot = await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        assert slot.role == "Tank"
        assert slot.selected_by == CREATOR

        other, other_account = await queue_player(
            queue, make_player, session_5v5, "u2", ["Tank", "DPS"], Tank=("Gold", 2)
        )
        with pytest.raises(RoleFull):
            await roster.promote(session_5v5.id, CREATOR, other.id, "Tank", other_account.id)

        assert (await sessions.get(session_5v5.id)).status is SessionStatus.OPEN

    @pytest.mark.asyncio
    async def test_full_team_flips_status(self, queue, roster, sessions, session_5v5, make_player):
        lineup = [
            ("tank", "Tank"),
            ("dps1", "DPS"),
            ("dps2", "DPS"),
            ("sup1", "Support"),
            ("sup2", "Support"),
        ]
        for user_id, role in lineup:
            entry, account = await queue_player(
                queue, make_player, session_5v5, user_id, [role], **{role: ("Platinum", 3)}
            )
            await roster.promote(session_5v5.id, CREATOR, entry.id, role, account.id)

        assert len(await roster.list_roster(session_5v5.id)) == 5
        assert (await sessions.get(session_5v5.id)).status is SessionStatus.FULL

    @pytest.mark.asyncio
    async def test_join_still_allowed_when_other_roles_open(
        self, queue, roster, session_5v5, make_player
    ):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "tank", ["Tank"], Tank=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)

        late, late_account = await queue_player(
            queue, make_player, session_5v5, "late", ["Tank", "Support"], Tank=("Gold", 1)
        )
        with pytest.raises(RoleFull):
            await roster.promote(session_5v5.id, CREATOR, late.id, "Tank", late_account.id)

    @pytest.mark.asyncio
    async def test_account_not_among_candidates(self, queue, roster, session_5v5, make_player):
        entry, _ = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        spare = await make_player("u1", "u1-alt", Tank=("Gold", 1))
        with pytest.raises(IneligibleAccount):
            await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", spare.id)
        assert len(await queue.list_queue(session_5v5.id)) == 1


class TestPromotePreconditions:
    @pytest.mark.asyncio
    async def test_only_creator(self, queue, roster, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        with pytest.raises(Forbidden):
            await roster.promote(session_5v5.id, "u1", entry.id, "Tank", account.id)

    @pytest.mark.asyncio
    async def test_unknown_role(self, queue, roster, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        with pytest.raises(InvalidRole):
            await roster.promote(session_5v5.id, CREATOR, entry.id, "Any", account.id)

    @pytest.mark.asyncio
    async def test_unknown_session_and_entry(self, roster, session_5v5):
        with pytest.raises(NotFound):
            await roster.promote(999, CREATOR, 1, "Tank", 1)
        with pytest.raises(NotFound):
            await roster.promote(session_5v5.id, CREATOR, 999, "Tank", 1)

    @pytest.mark.asyncio
    async def test_re_promote_fails_without_double_insert(
        self, queue, roster, session_5v5, make_player
    ):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["DPS"], DPS=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "DPS", account.id)
        with pytest.raises(NotFound):
            await roster.promote(session_5v5.id, CREATOR, entry.id, "DPS", account.id)
        assert len(await roster.list_roster(session_5v5.id)) == 1

    @pytest.mark.asyncio
    async def test_cancelled_session(self, queue, roster, sessions, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        await sessions.set_status(session_5v5.id, CREATOR, "cancelled")
        with pytest.raises(SessionCancelled):
            await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)

    @pytest.mark.asyncio
    async def test_closed_session_still_managed(
        self, queue, roster, sessions, session_5v5, make_player
    ):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        await sessions.set_status(session_5v5.id, CREATOR, "closed")
        await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        assert (await sessions.get(session_5v5.id)).status is SessionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_unranked_role_is_ineligible(self, queue, roster, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank", "DPS"], DPS=("Gold", 1)
        )
        with pytest.raises(IneligibleAccount):
            await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)

    @pytest.mark.asyncio
    async def test_rank_edit_after_queueing_counts(
        self, queue, roster, accounts, session_5v5, make_player
    ):
        entry, account = await queue_player(queue, make_player, session_5v5, "u1", ["Tank"])
        await accounts.edit_rank("u1", account.id, "Tank", "Master", 2)
        slot = await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        assert slot.account_id == account.id

    @pytest.mark.asyncio
    async def test_streaming_flag_carries_over(self, queue, roster, session_5v5, make_player):
        account = await make_player("u1", Tank=("Gold", 1))
        entry = await queue.join(session_5v5.id, "u1", [account.id], ["Tank"], streaming=True)
        slot = await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        assert slot.is_streaming

    @pytest.mark.asyncio
    async def test_queue_and_roster_exclusive(self, queue, roster, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        assert await queue.list_queue(session_5v5.id) == []
        assert [s.user_id for s in await roster.list_roster(session_5v5.id)] == ["u1"]

    @pytest.mark.asyncio
    async def test_rostered_user_cannot_be_promoted_twice(
        self, queue, roster, memory_store, session_5v5, make_player
    ):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["DPS"], DPS=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "DPS", account.id)
        # Force a stale entry next to the slot to exercise the guard
        async with memory_store.session_scope(session_5v5.id) as tx:
            stale = await tx.add_queue_entry("u1", [account.id], ["DPS"], False, None)
        with pytest.raises(AlreadyRostered):
            await roster.promote(session_5v5.id, CREATOR, stale.id, "DPS", account.id)


class TestEligibleAccounts:
    @pytest.mark.asyncio
    async def test_primary_first_then_declared_order(
        self, queue, roster, accounts, catalog, session_5v5
    ):
        main = await accounts.create_account("u1", "Main")
        alt = await accounts.create_account("u1", "Alt")
        smurf = await accounts.create_account("u1", "Smurf")
        for account in (main, alt, smurf):
            await accounts.edit_rank("u1", account.id, "Support", "Gold", 3)
        entry = await queue.join(session_5v5.id, "u1", [smurf.id, alt.id, main.id], ["Support"])

        eligible = await roster.eligible_accounts(entry, "Support", mode=catalog.get("5v5"))
        assert [a.id for a in eligible] == [main.id, smurf.id, alt.id]

    @pytest.mark.asyncio
    async def test_any_mode_takes_all_candidates(
        self, queue, roster, accounts, catalog, session_6v6
    ):
        main = await accounts.create_account("u1", "Main")
        alt = await accounts.create_account("u1", "Alt")
        entry = await queue.join(session_6v6.id, "u1", [alt.id, main.id])
        eligible = await roster.eligible_accounts(entry, "Any", mode=catalog.get("6v6"))
        assert [a.id for a in eligible] == [main.id, alt.id]

    @pytest.mark.asyncio
    async def test_deleted_account_drops_out(
        self, queue, roster, accounts, catalog, session_6v6
    ):
        main = await accounts.create_account("u1", "Main")
        alt = await accounts.create_account("u1", "Alt")
        entry = await queue.join(session_6v6.id, "u1", [main.id, alt.id])
        await accounts.delete_account("u1", alt.id)

        eligible = await roster.eligible_accounts(entry, "Any", mode=catalog.get("6v6"))
        assert [a.id for a in eligible] == [main.id]
        with pytest.raises(IneligibleAccount):
            await roster.promote(session_6v6.id, CREATOR, entry.id, "Any", alt.id)


class TestRankFilter:
    @pytest.mark.asyncio
    async def test_rank_gap_excludes_account(self, queue, roster, sessions, make_player):
        session = await sessions.create(CREATOR, "5v5", KICKOFF, max_rank_diff=5)
        anchor, anchor_account = await queue_player(
            queue, make_player, session, "anchor", ["Tank"], Tank=("Gold", 3)
        )
        await roster.promote(session.id, CREATOR, anchor.id, "Tank", anchor_account.id)

        close, close_account = await queue_player(
            queue, make_player, session, "close", ["DPS"], DPS=("Platinum", 3)
        )
        far, far_account = await queue_player(
            queue, make_player, session, "far", ["DPS"], DPS=("Diamond", 3)
        )

        with pytest.raises(IneligibleAccount):
            await roster.promote(session.id, CREATOR, far.id, "DPS", far_account.id)
        await roster.promote(session.id, CREATOR, close.id, "DPS", close_account.id)

    @pytest.mark.asyncio
    async def test_any_mode_compares_best_ranks(self, queue, roster, sessions, make_player):
        session = await sessions.create(CREATOR, "6v6", KICKOFF, max_rank_diff=1)
        anchor, anchor_account = await queue_player(
            queue, make_player, session, "anchor", None, Support=("Gold", 1)
        )
        await roster.promote(session.id, CREATOR, anchor.id, "Any", anchor_account.id)

        # best rank Platinum 5 is one division above Gold 1
        near, near_account = await queue_player(
            queue, make_player, session, "near", None, Tank=("Bronze", 5), DPS=("Platinum", 5)
        )
        far, far_account = await queue_player(
            queue, make_player, session, "far", None, Tank=("Diamond", 1)
        )

        with pytest.raises(IneligibleAccount):
            await roster.promote(session.id, CREATOR, far.id, "Any", far_account.id)
        slot = await roster.promote(session.id, CREATOR, near.id, "Any", near_account.id)
        assert slot.account_id == near_account.id

    @pytest.mark.asyncio
    async def test_no_filter_by_default(self, queue, roster, session_5v5, make_player):
        low, low_account = await queue_player(
            queue, make_player, session_5v5, "low", ["Tank"], Tank=("Bronze", 5)
        )
        high, high_account = await queue_player(
            queue, make_player, session_5v5, "high", ["DPS"], DPS=("Champion", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, low.id, "Tank", low_account.id)
        await roster.promote(session_5v5.id, CREATOR, high.id, "DPS", high_account.id)


class TestDemote:
    @pytest.mark.asyncio
    async def test_demote_reopens_full_session(
        self, queue, roster, sessions, session_6v6, make_player
    ):
        for n in range(6):
            account = await make_player(f"p{n}")
            entry = await queue.join(session_6v6.id, f"p{n}", [account.id])
            await roster.promote(session_6v6.id, CREATOR, entry.id, "Any", account.id)
        assert (await sessions.get(session_6v6.id)).status is SessionStatus.FULL

        slot = await roster.demote(session_6v6.id, CREATOR, "p3")
        assert slot.user_id == "p3"
        assert (await sessions.get(session_6v6.id)).status is SessionStatus.OPEN
        # not re-queued
        assert await queue.list_queue(session_6v6.id) == []

    @pytest.mark.asyncio
    async def test_self_withdrawal_and_permissions(self, queue, roster, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)

        with pytest.raises(Forbidden):
            await roster.demote(session_5v5.id, "u2", "u1")
        await roster.remove_from_roster(session_5v5.id, "u1", "u1")
        assert await roster.list_roster(session_5v5.id) == []

    @pytest.mark.asyncio
    async def test_not_on_roster(self, roster, session_5v5):
        with pytest.raises(NotFound):
            await roster.demote(session_5v5.id, CREATOR, "ghost")

    @pytest.mark.asyncio
    async def test_closed_stays_closed(self, queue, roster, sessions, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["Tank"], Tank=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "Tank", account.id)
        await sessions.set_status(session_5v5.id, CREATOR, "closed")
        await roster.demote(session_5v5.id, CREATOR, "u1")
        assert (await sessions.get(session_5v5.id)).status is SessionStatus.CLOSED


class TestComposition:
    @pytest.mark.asyncio
    async def test_role_fill(self, queue, roster, session_5v5, make_player):
        entry, account = await queue_player(
            queue, make_player, session_5v5, "u1", ["DPS"], DPS=("Gold", 1)
        )
        await roster.promote(session_5v5.id, CREATOR, entry.id, "DPS", account.id)

        fill = {f.role: f for f in await roster.composition(session_5v5.id)}
        assert list(fill) == ["Tank", "DPS", "Support"]
        assert fill["DPS"].filled == 1
        assert fill["DPS"].open_slots == 1
        assert not fill["DPS"].is_full
        assert fill["Tank"].filled == 0
