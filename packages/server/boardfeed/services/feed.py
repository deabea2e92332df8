"""
Feed Store reads: paginated personal feeds and subscription state.

Every read is safe for anonymous callers and returns an empty result for
them, as it does for subjects in another tenant.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from boardfeed.core.auth import Identity
from boardfeed.models.base import utcnow
from boardfeed.models.board import Board
from boardfeed.models.card import Card
from boardfeed.models.event import Event
from boardfeed.models.feed_item import FeedItem
from boardfeed.services.activity import event_to_read, parse_cursor
from boardfeed.services.subscriptions import active_user_ids
from boardfeed_shared.schemas.activity import FeedEntry, FeedItemRead, FeedPage, FollowState
from boardfeed_shared.schemas.common import IntervalMode, IntervalScope


async def get_feed(
    session: AsyncSession,
    user_id: Optional[uuid.UUID],
    org_id: Optional[uuid.UUID],
    cursor: Optional[str] = None,
    page_size: int = 25,
) -> FeedPage:
    """Newest-first page of a user's feed, each item joined with its event."""
    if user_id is None or org_id is None:
        return FeedPage()
    before = parse_cursor(cursor)

    stmt = select(FeedItem).where(FeedItem.user_id == user_id, FeedItem.org_id == org_id)
    if before is not None:
        stmt = stmt.where(FeedItem.id < before)
    stmt = stmt.order_by(FeedItem.id.desc()).limit(page_size + 1)
    result = await session.execute(stmt)
    items = list(result.scalars().all())

    is_done = len(items) <= page_size
    items = items[:page_size]

    events: dict[int, Event] = {}
    if items:
        result = await session.execute(
            select(Event).where(Event.id.in_([item.event_id for item in items]))
        )
        events = {e.id: e for e in result.scalars().all()}

    page = []
    for item in items:
        event = events.get(item.event_id)
        if event is not None and event.org_id != org_id:
            event = None
        page.append(
            FeedEntry(
                feed_item=FeedItemRead(
                    id=item.id,
                    user_id=item.user_id,
                    event_id=item.event_id,
                    event_time=item.event_time,
                    card_id=item.card_id,
                    board_id=item.board_id,
                ),
                event=event_to_read(event) if event else None,
            )
        )
    return FeedPage(
        page=page,
        is_done=is_done,
        continue_cursor="" if is_done else str(items[-1].id),
    )


# ---------------------------------------------------------------------------
# Subscription state
# ---------------------------------------------------------------------------


async def _visible_board(
    session: AsyncSession, identity: Optional[Identity], board_id: uuid.UUID
) -> Optional[Board]:
    if identity is None:
        return None
    board = await session.get(Board, board_id)
    if board is None or board.org_id != identity.org_id:
        return None
    return board


async def _visible_card(
    session: AsyncSession, identity: Optional[Identity], card_id: uuid.UUID
) -> Optional[Card]:
    if identity is None:
        return None
    card = await session.get(Card, card_id)
    if card is None or card.org_id != identity.org_id:
        return None
    return card


async def get_board_subscribers(
    session: AsyncSession,
    identity: Optional[Identity],
    board_id: uuid.UUID,
    now: datetime | None = None,
) -> list[uuid.UUID]:
    board = await _visible_board(session, identity, board_id)
    if board is None:
        return []
    users = await active_user_ids(
        session, board.org_id, IntervalScope.BOARD, board.id, IntervalMode.FOLLOW, now
    )
    return sorted(users, key=str)


async def _card_watchers(session: AsyncSession, card: Card, now: datetime) -> set[uuid.UUID]:
    watchers = await active_user_ids(
        session, card.org_id, IntervalScope.CARD, card.id, IntervalMode.FOLLOW, now
    )
    if card.board_id is not None:
        watchers |= await active_user_ids(
            session, card.org_id, IntervalScope.BOARD, card.board_id, IntervalMode.FOLLOW, now
        )
    muted = await active_user_ids(
        session, card.org_id, IntervalScope.CARD, card.id, IntervalMode.MUTE, now
    )
    return watchers - muted


async def get_card_watchers(
    session: AsyncSession,
    identity: Optional[Identity],
    card_id: uuid.UUID,
    now: datetime | None = None,
) -> list[uuid.UUID]:
    """Users who would receive an event on this card right now."""
    card = await _visible_card(session, identity, card_id)
    if card is None:
        return []
    return sorted(await _card_watchers(session, card, now or utcnow()), key=str)


async def is_subscribed_to_board(
    session: AsyncSession,
    identity: Optional[Identity],
    board_id: uuid.UUID,
    now: datetime | None = None,
) -> bool:
    board = await _visible_board(session, identity, board_id)
    if board is None:
        return False
    users = await active_user_ids(
        session, board.org_id, IntervalScope.BOARD, board.id, IntervalMode.FOLLOW, now
    )
    return identity.user_id in users


async def is_card_muted(
    session: AsyncSession,
    identity: Optional[Identity],
    card_id: uuid.UUID,
    now: datetime | None = None,
) -> bool:
    return (await get_follow_state(session, identity, card_id, now)).is_muting_card


async def is_watching_card(
    session: AsyncSession,
    identity: Optional[Identity],
    card_id: uuid.UUID,
    now: datetime | None = None,
) -> bool:
    return (await get_follow_state(session, identity, card_id, now)).is_watching_card


async def get_follow_state(
    session: AsyncSession,
    identity: Optional[Identity],
    card_id: uuid.UUID,
    now: datetime | None = None,
) -> FollowState:
    card = await _visible_card(session, identity, card_id)
    if card is None:
        return FollowState()
    now = now or utcnow()
    following = await active_user_ids(
        session, card.org_id, IntervalScope.CARD, card.id, IntervalMode.FOLLOW, now
    )
    muted = await active_user_ids(
        session, card.org_id, IntervalScope.CARD, card.id, IntervalMode.MUTE, now
    )
    return FollowState(
        is_following_card=identity.user_id in following,
        is_muting_card=identity.user_id in muted,
        is_watching_card=identity.user_id in await _card_watchers(session, card, now),
    )
