"""
Card endpoints: mutations that emit activity, plus card follows and mutes.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from boardfeed.core.auth import Identity, get_identity, get_optional_identity
from boardfeed.core.config import get_settings
from boardfeed.core.database import get_session
from boardfeed.core.jobs import commit_and_dispatch
from boardfeed.services import activity, cards, feed, subscriptions
from boardfeed_shared.schemas.activity import EventPage, FollowState
from boardfeed_shared.schemas.boards import SubscriberList
from boardfeed_shared.schemas.cards import (
    CardCreate,
    CardMove,
    CardRead,
    CardUpdate,
    CommentCreate,
    CommentRead,
)

router = APIRouter()
settings = get_settings()


# ---------------------------------------------------------------------------
# Card mutations
# ---------------------------------------------------------------------------


@router.post("", response_model=CardRead, status_code=201)
async def create_card_endpoint(
    card_in: CardCreate,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    card = await cards.create_card(session, identity, card_in)
    await commit_and_dispatch(session)
    return card


@router.patch("/{card_id}", response_model=CardRead)
async def update_card_endpoint(
    card_id: uuid.UUID,
    card_in: CardUpdate,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    """Update fields. Title, status and assignee changes each emit an event."""
    card = await cards.update_card(session, identity, card_id, card_in)
    await commit_and_dispatch(session)
    return card


@router.post("/{card_id}/move", response_model=CardRead)
async def move_card_endpoint(
    card_id: uuid.UUID,
    body: CardMove,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    card = await cards.move_card(session, identity, card_id, body.to_board_id)
    await commit_and_dispatch(session)
    return card


@router.delete("/{card_id}", status_code=204)
async def delete_card_endpoint(
    card_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await cards.delete_card(session, identity, card_id)
    await commit_and_dispatch(session)


@router.post("/{card_id}/comments", response_model=CommentRead, status_code=201)
async def add_comment_endpoint(
    card_id: uuid.UUID,
    body: CommentCreate,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    comment = await cards.add_comment(session, identity, card_id, body.content)
    await commit_and_dispatch(session)
    return comment


# ---------------------------------------------------------------------------
# Follows and mutes
# ---------------------------------------------------------------------------


async def _state_after(session: AsyncSession, identity: Identity, card_id: uuid.UUID) -> FollowState:
    await commit_and_dispatch(session)
    return await feed.get_follow_state(session, identity, card_id)


@router.post("/{card_id}/follow", response_model=FollowState)
async def follow_card_endpoint(
    card_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await subscriptions.follow_card(session, identity, card_id)
    return await _state_after(session, identity, card_id)


@router.delete("/{card_id}/follow", response_model=FollowState)
async def unfollow_card_endpoint(
    card_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await subscriptions.unfollow_card(session, identity, card_id)
    return await _state_after(session, identity, card_id)


@router.post("/{card_id}/mute", response_model=FollowState)
async def mute_card_endpoint(
    card_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    """Silence a card without leaving its board."""
    await subscriptions.mute_card(session, identity, card_id)
    return await _state_after(session, identity, card_id)


@router.delete("/{card_id}/mute", response_model=FollowState)
async def unmute_card_endpoint(
    card_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await subscriptions.unmute_card(session, identity, card_id)
    return await _state_after(session, identity, card_id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/{card_id}/watchers", response_model=SubscriberList)
async def card_watchers_endpoint(
    card_id: uuid.UUID,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    return SubscriberList(user_ids=await feed.get_card_watchers(session, identity, card_id))


@router.get("/{card_id}/follow-state", response_model=FollowState)
async def follow_state_endpoint(
    card_id: uuid.UUID,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    return await feed.get_follow_state(session, identity, card_id)


@router.get("/{card_id}/events", response_model=EventPage)
async def card_events_endpoint(
    card_id: uuid.UUID,
    cursor: Optional[str] = None,
    page_size: int = Query(settings.feed_page_size, ge=1, le=settings.feed_max_page_size),
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    """Event history for one card, newest first."""
    return await activity.list_card_events(session, identity, card_id, cursor, page_size)
