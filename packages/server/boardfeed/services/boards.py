"""
Board service layer: board lifecycle.

Handles:
- Creation, with the creator as first owner and optional initial members
- Visibility-aware reads
- Updates (editor or above) and deletion (owner only)

Deleting a board logs a card_deleted event for each of its cards while the
board still exists, so followers of the board receive every deletion.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from boardfeed.core.auth import Identity
from boardfeed.core.errors import NotAuthorized, NotFound
from boardfeed.models.base import utcnow
from boardfeed.models.board import Board
from boardfeed.models.card import Card, Comment
from boardfeed.models.membership import BoardMembership
from boardfeed.services import activity, membership
from boardfeed_shared.schemas.boards import BoardCreate, BoardRead, BoardUpdate
from boardfeed_shared.schemas.common import BoardRole

log = structlog.get_logger()


def board_to_read(board: Board, role: Optional[BoardRole]) -> BoardRead:
    return BoardRead(
        id=board.id,
        org_id=board.org_id,
        name=board.name,
        visibility=board.visibility,
        created_by=board.created_by,
        my_role=role,
        created_at=board.created_at,
        updated_at=board.updated_at,
    )


async def create_board(
    session: AsyncSession,
    identity: Identity,
    board_in: BoardCreate,
    *,
    now: datetime | None = None,
) -> Board:
    now = now or utcnow()
    board = Board(
        org_id=identity.org_id,
        name=board_in.name,
        visibility=board_in.visibility.value,
        created_by=identity.user_id,
        created_at=now,
        updated_at=now,
    )
    session.add(board)
    await session.flush()

    await membership.bootstrap_owner(session, board, identity.user_id, now=now)

    # Highest roles first, so overlapping lists collapse to the strongest grant
    initial = (
        (BoardRole.OWNER, board_in.owner_ids),
        (BoardRole.EDITOR, board_in.editor_ids),
        (BoardRole.VIEWER, board_in.viewer_ids),
    )
    for role, user_ids in initial:
        for user_id in user_ids:
            await membership.assign_role(session, board.id, identity, user_id, role, now=now)

    log.info("boards.created", board_id=str(board.id), org_id=str(board.org_id))
    return board


async def get_board(
    session: AsyncSession, identity: Optional[Identity], board_id: uuid.UUID
) -> tuple[Board, Optional[BoardRole]]:
    """Board plus the caller's role. Invisible boards look missing."""
    board = await session.get(Board, board_id)
    if board is None:
        raise NotFound("Board not found")
    role = await membership.role_of(session, board.id, identity.user_id) if identity else None
    if not membership.can_view_board(board, role, identity):
        raise NotFound("Board not found")
    return board, role


async def update_board(
    session: AsyncSession,
    identity: Identity,
    board_id: uuid.UUID,
    board_in: BoardUpdate,
    *,
    now: datetime | None = None,
) -> Board:
    board = await membership.get_board_or_404(session, board_id, identity)
    role = await membership.role_of(session, board.id, identity.user_id)
    if not membership.is_editor(role):
        raise NotAuthorized("Only owners or editors can update a board")

    for field, value in board_in.model_dump(exclude_unset=True, mode="json").items():
        if value is not None:
            setattr(board, field, value)
    board.updated_at = now or utcnow()
    session.add(board)
    await session.flush()
    return board


async def delete_board(
    session: AsyncSession,
    identity: Identity,
    board_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> int:
    """Delete a board with its cards and memberships. Returns the card count."""
    now = now or utcnow()
    board = await membership.get_board_or_404(session, board_id, identity)
    role = await membership.role_of(session, board.id, identity.user_id)
    if not membership.is_owner(role):
        raise NotAuthorized("Only owners can delete a board")

    result = await session.execute(select(Card).where(Card.board_id == board.id))
    cards = list(result.scalars().all())
    await activity.log_card_deleted_batch(
        session, org_id=board.org_id, actor_id=identity.user_id, cards=cards, at=now
    )

    card_ids = [card.id for card in cards]
    if card_ids:
        await session.execute(delete(Comment).where(Comment.card_id.in_(card_ids)))
        await session.execute(delete(Card).where(Card.id.in_(card_ids)))
    await session.execute(delete(BoardMembership).where(BoardMembership.board_id == board.id))
    await session.delete(board)
    await session.flush()

    log.info("boards.deleted", board_id=str(board_id), cards=len(cards))
    return len(cards)
