"""
Tests for the Subscription Interval Store.

Covers:
- The active / covers predicates on intervals
- Idempotent follow and unfollow
- Card follow and mute exclusivity
- Fresh-start mute clearing when following or unfollowing a board
"""

from __future__ import annotations

import uuid

import pytest
from sqlmodel import select

from boardfeed.core.errors import NotAuthorized, NotFound, TenantMismatch
from boardfeed.models.event import Event
from boardfeed.models.follow_interval import FollowInterval, interval_covers
from boardfeed.services import boards, cards, feed, subscriptions
from boardfeed_shared.schemas.boards import BoardCreate
from boardfeed_shared.schemas.cards import CardCreate
from boardfeed_shared.schemas.common import EventKind, IntervalMode, IntervalScope

from conftest import at, make_identity


def _interval(started, ended=None) -> FollowInterval:
    return FollowInterval(
        org_id=uuid.uuid4(),
        scope=IntervalScope.BOARD.value,
        subject_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        mode=IntervalMode.FOLLOW.value,
        started_at=started,
        ended_at=ended,
    )


async def _intervals(session, user_id, scope: IntervalScope, mode: IntervalMode) -> list[FollowInterval]:
    result = await session.execute(
        select(FollowInterval)
        .where(
            FollowInterval.user_id == user_id,
            FollowInterval.scope == scope.value,
            FollowInterval.mode == mode.value,
        )
        .order_by(FollowInterval.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Unit tests: interval predicates
# ---------------------------------------------------------------------------


class TestIntervalPredicates:
    def test_open_interval_is_active(self):
        assert _interval(at(0)).is_active(at(5))

    def test_not_yet_started_is_inactive(self):
        assert not _interval(at(10)).is_active(at(5))

    def test_ended_interval_is_never_active(self):
        interval = _interval(at(0), at(10))
        for now in (at(-1), at(5), at(10), at(20)):
            assert not interval.is_active(now)

    def test_ended_before_start_is_never_active(self):
        assert not _interval(at(10), at(0)).is_active(at(5))

    def test_covers_is_half_open(self):
        assert interval_covers(at(0), at(10), at(0))
        assert interval_covers(at(0), at(10), at(9.99))
        assert not interval_covers(at(0), at(10), at(10))
        assert not interval_covers(at(0), at(10), at(-1))

    def test_covers_matches_active_for_open_intervals(self):
        interval = _interval(at(0))
        for now in (at(-1), at(0), at(3)):
            assert interval.covers(now) == interval.is_active(now)


# ---------------------------------------------------------------------------
# Integration tests: board follows
# ---------------------------------------------------------------------------


class TestBoardFollow:
    @pytest.mark.asyncio
    async def test_follow_twice_yields_one_active_interval(self, session, settle, owner, org_id):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        user = make_identity(org_id)
        assert await subscriptions.follow_board(session, user, board.id, now=at(1))
        assert not await subscriptions.follow_board(session, user, board.id, now=at(2))
        await settle()

        rows = await _intervals(session, user.user_id, IntervalScope.BOARD, IntervalMode.FOLLOW)
        assert len(rows) == 1
        assert rows[0].started_at == at(1)
        assert rows[0].ended_at is None

    @pytest.mark.asyncio
    async def test_unfollow_closes_without_deleting(self, session, settle, owner, org_id):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        user = make_identity(org_id)
        await subscriptions.follow_board(session, user, board.id, now=at(1))
        assert await subscriptions.unfollow_board(session, user, board.id, now=at(2))
        assert not await subscriptions.unfollow_board(session, user, board.id, now=at(3))
        await subscriptions.follow_board(session, user, board.id, now=at(4))
        await settle()

        rows = await _intervals(session, user.user_id, IntervalScope.BOARD, IntervalMode.FOLLOW)
        assert [(r.started_at, r.ended_at) for r in rows] == [(at(1), at(2)), (at(4), None)]

    @pytest.mark.asyncio
    async def test_follow_clears_card_mutes_on_board(self, session, settle, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        card = await cards.create_card(session, owner, CardCreate(title="Patch", board_id=board.id), now=at(1))
        await subscriptions.mute_card(session, owner, card.id, now=at(2))
        assert await subscriptions.is_active(
            session, owner.org_id, IntervalScope.CARD, card.id, owner.user_id, IntervalMode.MUTE, at(2)
        )

        await subscriptions.follow_board(session, owner, board.id, now=at(3))
        await settle()

        assert not await subscriptions.is_active(
            session, owner.org_id, IntervalScope.CARD, card.id, owner.user_id, IntervalMode.MUTE, at(3)
        )

    @pytest.mark.asyncio
    async def test_unfollow_clears_card_mutes_on_board(self, session, settle, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        card = await cards.create_card(session, owner, CardCreate(title="Patch", board_id=board.id), now=at(1))
        await settle()
        await subscriptions.mute_card(session, owner, card.id, now=at(2))
        await subscriptions.unfollow_board(session, owner, board.id, now=at(3))
        await settle()

        mutes = await _intervals(session, owner.user_id, IntervalScope.CARD, IntervalMode.MUTE)
        assert [(m.started_at, m.ended_at) for m in mutes] == [(at(2), at(3))]

    @pytest.mark.asyncio
    async def test_other_tenant_rejected(self, session, settle, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        await settle()

        with pytest.raises(TenantMismatch):
            await subscriptions.follow_board(session, make_identity(), board.id)

    @pytest.mark.asyncio
    async def test_missing_board(self, session, owner):
        with pytest.raises(NotFound):
            await subscriptions.follow_board(session, owner, uuid.uuid4())


# ---------------------------------------------------------------------------
# Integration tests: card follows and mutes
# ---------------------------------------------------------------------------


class TestCardToggles:
    @pytest.mark.asyncio
    async def test_mute_keeps_board_follow(self, session, settle, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        card = await cards.create_card(session, owner, CardCreate(title="Patch", board_id=board.id), now=at(1))
        await settle()

        await subscriptions.mute_card(session, owner, card.id, now=at(2))
        await settle()

        assert await feed.is_subscribed_to_board(session, owner, board.id)
        assert await feed.is_card_muted(session, owner, card.id)
        assert not await feed.is_watching_card(session, owner, card.id)

    @pytest.mark.asyncio
    async def test_follow_and_mute_exclude_each_other(self, session, settle, owner):
        card = await cards.create_card(session, owner, CardCreate(title="Loose"), now=at(0))
        await subscriptions.follow_card(session, owner, card.id, now=at(1))
        await subscriptions.mute_card(session, owner, card.id, now=at(2))
        await settle()

        state = await feed.get_follow_state(session, owner, card.id)
        assert not state.is_following_card
        assert state.is_muting_card

        await subscriptions.follow_card(session, owner, card.id, now=at(3))
        await settle()

        state = await feed.get_follow_state(session, owner, card.id)
        assert state.is_following_card
        assert not state.is_muting_card
        assert state.is_watching_card

    @pytest.mark.asyncio
    async def test_toggles_are_idempotent(self, session, settle, owner):
        card = await cards.create_card(session, owner, CardCreate(title="Loose"), now=at(0))
        assert await subscriptions.mute_card(session, owner, card.id, now=at(1))
        assert not await subscriptions.mute_card(session, owner, card.id, now=at(2))
        assert await subscriptions.unmute_card(session, owner, card.id, now=at(3))
        assert not await subscriptions.unmute_card(session, owner, card.id, now=at(4))
        assert not await subscriptions.unfollow_card(session, owner, card.id, now=at(5))
        await settle()

        mutes = await _intervals(session, owner.user_id, IntervalScope.CARD, IntervalMode.MUTE)
        assert [(m.started_at, m.ended_at) for m in mutes] == [(at(1), at(3))]

    @pytest.mark.asyncio
    async def test_active_user_ids(self, session, settle, owner, org_id):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        user = make_identity(org_id)
        await subscriptions.follow_board(session, user, board.id, now=at(1))
        await settle()

        users = await subscriptions.active_user_ids(
            session, org_id, IntervalScope.BOARD, board.id, IntervalMode.FOLLOW, at(2)
        )
        assert users == {owner.user_id, user.user_id}
        # Not started yet at this instant
        early = await subscriptions.active_user_ids(
            session, org_id, IntervalScope.BOARD, board.id, IntervalMode.FOLLOW, at(0.5)
        )
        assert early == {owner.user_id}


class TestAutoSubscribeJob:
    @pytest.mark.asyncio
    async def test_starts_at_grant_time(self, session, owner, org_id):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        member = uuid.uuid4()

        assert await subscriptions.subscribe_user_to_board(session, org_id, board.id, member, at(3))
        # Running again is a no-op
        assert not await subscriptions.subscribe_user_to_board(session, org_id, board.id, member, at(9))

        [interval] = await _intervals(session, member, IntervalScope.BOARD, IntervalMode.FOLLOW)
        assert interval.started_at == at(3)
        assert interval.ended_at is None

    @pytest.mark.asyncio
    async def test_skips_missing_or_foreign_board(self, session, owner, org_id):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        member = uuid.uuid4()

        assert not await subscriptions.subscribe_user_to_board(session, org_id, uuid.uuid4(), member, at(1))
        assert not await subscriptions.subscribe_user_to_board(session, uuid.uuid4(), board.id, member, at(1))
        assert await _intervals(session, member, IntervalScope.BOARD, IntervalMode.FOLLOW) == []


async def _event_kinds(session) -> list[EventKind]:
    result = await session.execute(select(Event.kind).order_by(Event.id))
    return [EventKind(kind) for kind in result.scalars().all()]


class TestConcurrentFollow:
    @pytest.mark.asyncio
    async def test_lost_race_is_a_noop(self, session, session_factory, owner, org_id, monkeypatch):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        await session.commit()
        user = make_identity(org_id)

        async with session_factory() as first:
            assert await subscriptions.follow_board(first, user, board.id, now=at(1))
            await first.commit()

        # This request read "not following" before the first one committed
        async def _stale_read(*args, **kwargs):
            return None

        monkeypatch.setattr(subscriptions, "_open_interval", _stale_read)
        assert not await subscriptions.follow_board(session, user, board.id, now=at(2))
        await session.commit()
        monkeypatch.undo()

        [interval] = await _intervals(session, user.user_id, IntervalScope.BOARD, IntervalMode.FOLLOW)
        assert interval.started_at == at(1)
        assert interval.ended_at is None


class TestSubscriptionEvents:
    @pytest.mark.asyncio
    async def test_board_follow_toggles_are_logged(self, session, owner, org_id):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        user = make_identity(org_id)

        await subscriptions.follow_board(session, user, board.id, now=at(1))
        await subscriptions.follow_board(session, user, board.id, now=at(2))
        await subscriptions.unfollow_board(session, user, board.id, now=at(3))
        await subscriptions.unfollow_board(session, user, board.id, now=at(4))

        assert await _event_kinds(session) == [
            EventKind.USER_SUBSCRIBED_TO_BOARD,
            EventKind.USER_UNSUBSCRIBED_FROM_BOARD,
        ]
        result = await session.execute(select(Event).order_by(Event.id))
        events = result.scalars().all()
        assert all(e.actor_id == user.user_id for e in events)
        assert all(e.board_context_ids == [str(board.id)] for e in events)
        assert events[0].payload == {"board_name": "Ops"}

    @pytest.mark.asyncio
    async def test_mute_toggles_are_logged(self, session, owner):
        card = await cards.create_card(session, owner, CardCreate(title="Noisy"), now=at(0))

        await subscriptions.mute_card(session, owner, card.id, now=at(1))
        await subscriptions.mute_card(session, owner, card.id, now=at(2))
        await subscriptions.unmute_card(session, owner, card.id, now=at(3))
        # Card follows are not logged
        await subscriptions.follow_card(session, owner, card.id, now=at(4))

        assert await _event_kinds(session) == [
            EventKind.CARD_CREATED,
            EventKind.USER_MUTED_CARD,
            EventKind.USER_UNMUTED_CARD,
        ]

    @pytest.mark.asyncio
    async def test_muter_does_not_receive_own_mute(self, session, settle, owner, org_id):
        follower = make_identity(org_id)
        board = await boards.create_board(
            session, owner, BoardCreate(name="Ops", viewer_ids=[follower.user_id]), now=at(0)
        )
        card = await cards.create_card(session, owner, CardCreate(title="K", board_id=board.id), now=at(1))
        await settle()

        await subscriptions.mute_card(session, owner, card.id, now=at(2))
        await settle()

        page = await feed.get_feed(session, follower.user_id, org_id)
        assert page.page[0].event.kind == EventKind.USER_MUTED_CARD
        own = await feed.get_feed(session, owner.user_id, org_id)
        assert EventKind.USER_MUTED_CARD not in [e.event.kind for e in own.page]


class TestBoardWatchers:
    @pytest.mark.asyncio
    async def test_editor_adds_and_removes_watchers(self, session, owner, org_id):
        editor = make_identity(org_id)
        board = await boards.create_board(
            session, owner, BoardCreate(name="Ops", editor_ids=[editor.user_id]), now=at(0)
        )
        watcher = uuid.uuid4()

        assert await subscriptions.add_board_watcher(session, editor, board.id, watcher, now=at(1))
        assert not await subscriptions.add_board_watcher(session, owner, board.id, watcher, now=at(2))
        assert watcher in await feed.get_board_subscribers(session, owner, board.id, at(2))

        assert await subscriptions.remove_board_watcher(session, owner, board.id, watcher, now=at(3))
        assert watcher not in await feed.get_board_subscribers(session, owner, board.id, at(3))

    @pytest.mark.asyncio
    async def test_viewer_cannot_manage_watchers(self, session, owner, org_id):
        viewer = make_identity(org_id)
        board = await boards.create_board(
            session, owner, BoardCreate(name="Ops", viewer_ids=[viewer.user_id]), now=at(0)
        )

        with pytest.raises(NotAuthorized):
            await subscriptions.add_board_watcher(session, viewer, board.id, uuid.uuid4())
        with pytest.raises(NotAuthorized):
            await subscriptions.remove_board_watcher(session, viewer, board.id, owner.user_id)
        # Tenant members without a role are treated the same
        with pytest.raises(NotAuthorized):
            await subscriptions.add_board_watcher(session, make_identity(org_id), board.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_other_tenant_rejected(self, session, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))

        with pytest.raises(TenantMismatch):
            await subscriptions.add_board_watcher(session, make_identity(), board.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_adding_watcher_clears_their_card_mutes(self, session, owner, org_id):
        user = make_identity(org_id)
        board = await boards.create_board(session, owner, BoardCreate(name="Ops"), now=at(0))
        card = await cards.create_card(session, owner, CardCreate(title="K", board_id=board.id), now=at(1))
        await subscriptions.mute_card(session, user, card.id, now=at(2))

        await subscriptions.add_board_watcher(session, owner, board.id, user.user_id, now=at(3))

        mutes = await _intervals(session, user.user_id, IntervalScope.CARD, IntervalMode.MUTE)
        assert [(m.started_at, m.ended_at) for m in mutes] == [(at(2), at(3))]
