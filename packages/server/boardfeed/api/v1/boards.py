"""
Board endpoints: lifecycle, membership, board follows, and watchers.

Mutations commit first and only then schedule fan-out, so a failed fan-out
never undoes the change that triggered it.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from boardfeed.core.auth import Identity, get_identity, get_optional_identity
from boardfeed.core.database import get_session
from boardfeed.core.jobs import commit_and_dispatch
from boardfeed.services import boards as board_service
from boardfeed.services import feed, membership, subscriptions
from boardfeed_shared.schemas.activity import BoardFollowState
from boardfeed_shared.schemas.boards import (
    BoardCreate,
    BoardRead,
    BoardUpdate,
    MemberAssign,
    MemberRead,
    SubscriberList,
)
from boardfeed_shared.schemas.common import BoardRole

router = APIRouter()


# ---------------------------------------------------------------------------
# Board lifecycle
# ---------------------------------------------------------------------------


@router.post("", response_model=BoardRead, status_code=201)
async def create_board_endpoint(
    board_in: BoardCreate,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    """Create a board. The caller becomes its first owner."""
    board = await board_service.create_board(session, identity, board_in)
    await commit_and_dispatch(session)
    return board_service.board_to_read(board, BoardRole.OWNER)


@router.get("/{board_id}", response_model=BoardRead)
async def get_board_endpoint(
    board_id: uuid.UUID,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    board, role = await board_service.get_board(session, identity, board_id)
    return board_service.board_to_read(board, role)


@router.patch("/{board_id}", response_model=BoardRead)
async def update_board_endpoint(
    board_id: uuid.UUID,
    board_in: BoardUpdate,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    board = await board_service.update_board(session, identity, board_id, board_in)
    role = await membership.role_of(session, board.id, identity.user_id)
    await commit_and_dispatch(session)
    return board_service.board_to_read(board, role)


@router.delete("/{board_id}", status_code=204)
async def delete_board_endpoint(
    board_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    """Delete a board. Followers get one card_deleted event per card."""
    await board_service.delete_board(session, identity, board_id)
    await commit_and_dispatch(session)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@router.get("/{board_id}/members", response_model=List[MemberRead])
async def list_members_endpoint(
    board_id: uuid.UUID,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    board, _ = await board_service.get_board(session, identity, board_id)
    return await membership.list_members(session, board.id)


@router.put("/{board_id}/members/{user_id}", response_model=Optional[MemberRead])
async def assign_member_endpoint(
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    body: MemberAssign,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    """Grant a role. Roles already implied by a higher one are left alone."""
    row = await membership.assign_role(session, board_id, identity, user_id, body.role)
    await commit_and_dispatch(session)
    return row


@router.delete("/{board_id}/members/{user_id}", status_code=204)
async def remove_member_endpoint(
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await membership.remove_member(session, board_id, identity, user_id)
    await commit_and_dispatch(session)


# ---------------------------------------------------------------------------
# Follows
# ---------------------------------------------------------------------------


@router.post("/{board_id}/follow", response_model=BoardFollowState)
async def follow_board_endpoint(
    board_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await subscriptions.follow_board(session, identity, board_id)
    await commit_and_dispatch(session)
    return BoardFollowState(is_following_board=True)


@router.delete("/{board_id}/follow", response_model=BoardFollowState)
async def unfollow_board_endpoint(
    board_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await subscriptions.unfollow_board(session, identity, board_id)
    await commit_and_dispatch(session)
    return BoardFollowState(is_following_board=False)


@router.put("/{board_id}/watchers/{user_id}", response_model=SubscriberList)
async def add_board_watcher_endpoint(
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    """Subscribe another user to the board (owner or editor)."""
    await subscriptions.add_board_watcher(session, identity, board_id, user_id)
    await commit_and_dispatch(session)
    return SubscriberList(user_ids=await feed.get_board_subscribers(session, identity, board_id))


@router.delete("/{board_id}/watchers/{user_id}", response_model=SubscriberList)
async def remove_board_watcher_endpoint(
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
):
    await subscriptions.remove_board_watcher(session, identity, board_id, user_id)
    await commit_and_dispatch(session)
    return SubscriberList(user_ids=await feed.get_board_subscribers(session, identity, board_id))


@router.get("/{board_id}/subscribers", response_model=SubscriberList)
async def board_subscribers_endpoint(
    board_id: uuid.UUID,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    return SubscriberList(user_ids=await feed.get_board_subscribers(session, identity, board_id))


@router.get("/{board_id}/following", response_model=BoardFollowState)
async def board_following_endpoint(
    board_id: uuid.UUID,
    identity: Optional[Identity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(get_session),
):
    return BoardFollowState(
        is_following_board=await feed.is_subscribed_to_board(session, identity, board_id)
    )
