"""
Fan-out tests: recipient computation and feed item materialization.

Recipients of an event on card C with board context [B1, B2] at time t are
(followers(C, t) ∪ followers(B1, t) ∪ followers(B2, t)) minus muters(C, t).
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func
from sqlmodel import select

from boardfeed.models.board import Board
from boardfeed.models.card import Card
from boardfeed.models.event import Event
from boardfeed.models.feed_item import FeedItem
from boardfeed.services import activity, boards, cards, membership, subscriptions
from boardfeed_shared.schemas.activity import EventPayload
from boardfeed_shared.schemas.boards import BoardCreate
from boardfeed_shared.schemas.cards import CardCreate, CardUpdate
from boardfeed_shared.schemas.common import BoardRole, EventKind

from conftest import at, make_identity


async def _received(session, user_id: uuid.UUID, kind: EventKind) -> list[FeedItem]:
    result = await session.execute(
        select(FeedItem)
        .join(Event, Event.id == FeedItem.event_id)
        .where(FeedItem.user_id == user_id, Event.kind == kind.value)
        .order_by(FeedItem.id)
    )
    return list(result.scalars().all())


async def _feed_item_count(session) -> int:
    result = await session.execute(select(func.count()).select_from(FeedItem))
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Unit tests: recipient set algebra
# ---------------------------------------------------------------------------


class TestResolveRecipients:
    def test_union_minus_muted(self):
        a, b, c, d = (uuid.uuid4() for _ in range(4))
        assert activity.resolve_recipients({a}, {b, c}, {c, d}) == {a, b}

    def test_mute_beats_card_follow(self):
        a = uuid.uuid4()
        assert activity.resolve_recipients({a}, set(), {a}) == set()

    def test_empty(self):
        assert activity.resolve_recipients([], [], []) == set()


# ---------------------------------------------------------------------------
# Integration tests: recipient formula
# ---------------------------------------------------------------------------


class TestRecipientFormula:
    @pytest.mark.asyncio
    async def test_move_reaches_both_boards(self, session, settle, owner, org_id):
        source = await boards.create_board(session, owner, BoardCreate(name="Source"), now=at(0))
        target = await boards.create_board(session, owner, BoardCreate(name="Target"), now=at(0))
        card = await cards.create_card(session, owner, CardCreate(title="K", board_id=source.id), now=at(1))

        source_follower = make_identity(org_id)
        target_follower = make_identity(org_id)
        card_follower = make_identity(org_id)
        muter = make_identity(org_id)
        bystander = make_identity(org_id)
        await subscriptions.follow_board(session, source_follower, source.id, now=at(2))
        await subscriptions.follow_board(session, target_follower, target.id, now=at(2))
        await subscriptions.follow_board(session, muter, source.id, now=at(2))
        await subscriptions.follow_card(session, card_follower, card.id, now=at(2))
        await subscriptions.mute_card(session, muter, card.id, now=at(3))
        await settle()

        await cards.move_card(session, owner, card.id, target.id, now=at(4))
        await settle()

        moved = await session.execute(
            select(Event).where(Event.kind == EventKind.CARD_BOARD_CHANGED.value)
        )
        event = moved.scalars().one()
        assert event.board_context_ids == [str(source.id), str(target.id)]

        result = await session.execute(select(FeedItem.user_id).where(FeedItem.event_id == event.id))
        recipients = set(result.scalars().all())
        assert recipients == {
            source_follower.user_id,
            target_follower.user_id,
            card_follower.user_id,
            # Creator of both boards
            owner.user_id,
        }
        assert muter.user_id not in recipients
        assert bystander.user_id not in recipients

    @pytest.mark.asyncio
    async def test_unassigned_card_reaches_card_followers_only(self, session, settle, owner, org_id):
        card = await cards.create_card(session, owner, CardCreate(title="Loose"), now=at(0))
        follower = make_identity(org_id)
        await subscriptions.follow_card(session, follower, card.id, now=at(1))
        await cards.update_card(session, owner, card.id, CardUpdate(title="Renamed"), now=at(2))
        await settle()

        items = await _received(session, follower.user_id, EventKind.CARD_TITLE_CHANGED)
        assert len(items) == 1
        assert await _received(session, owner.user_id, EventKind.CARD_TITLE_CHANGED) == []

    @pytest.mark.asyncio
    async def test_externally_produced_board_event_reaches_followers(self, session, settle, owner, org_id):
        follower = make_identity(org_id)
        board = await boards.create_board(session, owner, BoardCreate(name="News"), now=at(0))
        await subscriptions.follow_board(session, follower, board.id, now=at(1))
        await settle()

        await activity.log_event(
            session,
            org_id=org_id,
            actor_id=owner.user_id,
            kind=EventKind.ANNOUNCEMENT_PUBLISHED,
            board_id=board.id,
            board_context_ids=[board.id],
            payload=EventPayload(announcement_title="Launch day"),
            at=at(2),
        )
        await settle()

        for user in (owner, follower):
            [item] = await _received(session, user.user_id, EventKind.ANNOUNCEMENT_PUBLISHED)
            assert item.event_time == at(2)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    @pytest.mark.asyncio
    async def test_follower_receives_creation_but_actor_does_not(self, session, settle, org_id):
        follower = make_identity(org_id)
        actor = make_identity(org_id)
        board = await boards.create_board(session, follower, BoardCreate(name="X"), now=at(0))
        await membership.assign_role(session, board.id, follower, actor.user_id, BoardRole.EDITOR, now=at(0))
        await settle()
        # The editor grant auto-subscribed the actor; opt back out
        await subscriptions.unfollow_board(session, actor, board.id, now=at(0.5))
        await settle()

        await cards.create_card(session, actor, CardCreate(title="K", board_id=board.id), now=at(1))
        await settle()

        received = await _received(session, follower.user_id, EventKind.CARD_CREATED)
        assert len(received) == 1
        assert received[0].event_time == at(1)
        assert await _received(session, actor.user_id, EventKind.CARD_CREATED) == []

    @pytest.mark.asyncio
    async def test_mute_window_suppresses_only_events_inside_it(self, session, settle, owner, org_id):
        watcher = make_identity(org_id)
        board = await boards.create_board(
            session, owner, BoardCreate(name="X", viewer_ids=[watcher.user_id]), now=at(0)
        )
        card = await cards.create_card(session, owner, CardCreate(title="K", board_id=board.id), now=at(1))
        await settle()

        await subscriptions.mute_card(session, watcher, card.id, now=at(2))
        await cards.update_card(session, owner, card.id, CardUpdate(status="next_up"), now=at(3))
        await subscriptions.unmute_card(session, watcher, card.id, now=at(4))
        await cards.update_card(session, owner, card.id, CardUpdate(status="done"), now=at(5))
        # Fan-out for both events runs only now, after the unmute
        await settle()

        received = await _received(session, watcher.user_id, EventKind.CARD_STATUS_CHANGED)
        assert len(received) == 1
        assert received[0].event_time == at(5)
        # The board follow was never interrupted
        assert len(await _received(session, owner.user_id, EventKind.CARD_STATUS_CHANGED)) == 2

    @pytest.mark.asyncio
    async def test_board_deletion_fans_out_each_card(self, session, settle, owner, org_id):
        follower = make_identity(org_id)
        board = await boards.create_board(session, owner, BoardCreate(name="X"), now=at(0))
        await subscriptions.follow_board(session, follower, board.id, now=at(0))
        for i in range(3):
            await cards.create_card(session, owner, CardCreate(title=f"K{i}", board_id=board.id), now=at(1))
        await settle()

        deleted = await boards.delete_board(session, owner, board.id, now=at(5))
        await settle()
        assert deleted == 3

        events = await session.execute(
            select(Event).where(Event.kind == EventKind.CARD_DELETED.value)
        )
        events = list(events.scalars().all())
        assert len(events) == 3
        assert all(e.board_context_ids == [str(board.id)] for e in events)
        assert {e.payload["deleted_title"] for e in events} == {"K0", "K1", "K2"}

        for user in (owner, follower):
            received = await _received(session, user.user_id, EventKind.CARD_DELETED)
            assert len(received) == 3
            assert {r.event_id for r in received} == {e.id for e in events}

        assert await session.get(Board, board.id) is None
        remaining = await session.execute(select(Card).where(Card.board_id == board.id))
        assert remaining.scalars().all() == []


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


class TestIdempotentFanOut:
    @pytest.mark.asyncio
    async def test_rerun_writes_nothing_new(self, session, settle, session_factory, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="X"), now=at(0))
        await settle()
        card = await cards.create_card(session, owner, CardCreate(title="K", board_id=board.id), now=at(1))
        await settle()

        before = await _feed_item_count(session)
        event_id = (
            await session.execute(select(Event.id).where(Event.card_id == card.id))
        ).scalar_one()

        async with session_factory() as retry_session:
            written = await activity.fan_out_event(retry_session, event_id)
            await retry_session.commit()

        assert written == 0
        assert await _feed_item_count(session) == before

    @pytest.mark.asyncio
    async def test_conflicting_insert_is_ignored(self, session, settle, session_factory, owner):
        board = await boards.create_board(session, owner, BoardCreate(name="X"), now=at(0))
        await settle()
        card = await cards.create_card(session, owner, CardCreate(title="K", board_id=board.id), now=at(1))
        await settle()
        event = (await session.execute(select(Event).where(Event.card_id == card.id))).scalar_one()

        async with session_factory() as retry_session:
            await activity._insert_feed_items(
                retry_session,
                [
                    {
                        "org_id": event.org_id,
                        "user_id": owner.user_id,
                        "event_id": event.id,
                        "event_time": event.timestamp,
                        "card_id": card.id,
                        "board_id": board.id,
                    }
                ],
            )
            await retry_session.commit()

        assert len(await _received(session, owner.user_id, EventKind.CARD_CREATED)) == 1

    @pytest.mark.asyncio
    async def test_missing_event_is_skipped(self, session_factory):
        async with session_factory() as session:
            assert await activity.fan_out_event(session, 9999) == 0
