"""
Card service layer: card mutations and the activity events they emit.

Each mutation logs its events in the same transaction, with the card's board
as context. A move carries both the old and the new board so followers of
either receive it.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from boardfeed.core.auth import Identity
from boardfeed.core.errors import NotAuthorized, NotFound
from boardfeed.models.base import utcnow
from boardfeed.models.card import Card, Comment
from boardfeed.services import activity
from boardfeed.services.membership import can_view_board, get_board_or_404, role_of
from boardfeed_shared.schemas.activity import EventPayload
from boardfeed_shared.schemas.cards import CardCreate, CardUpdate
from boardfeed_shared.schemas.common import BoardRole, EventKind, role_at_least

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_card_or_404(
    session: AsyncSession, card_id: uuid.UUID, identity: Identity
) -> Card:
    card = await session.get(Card, card_id)
    if not card:
        raise NotFound("Card not found")
    identity.require_tenant(card.org_id)
    return card


async def _require_editor(
    session: AsyncSession, board_id: Optional[uuid.UUID], identity: Identity
) -> None:
    if board_id is None:
        return
    board = await get_board_or_404(session, board_id, identity)
    role = await role_of(session, board.id, identity.user_id)
    if not role_at_least(role, BoardRole.EDITOR):
        raise NotAuthorized("Editing cards requires editor access to the board")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def create_card(
    session: AsyncSession,
    identity: Identity,
    card_in: CardCreate,
    *,
    now: datetime | None = None,
) -> Card:
    now = now or utcnow()
    await _require_editor(session, card_in.board_id, identity)

    card = Card(
        org_id=identity.org_id,
        board_id=card_in.board_id,
        title=card_in.title,
        description=card_in.description,
        status=card_in.status,
        assigned_to=card_in.assigned_to,
        author_id=identity.user_id,
        created_at=now,
        updated_at=now,
    )
    session.add(card)
    await session.flush()

    await activity.log_event(
        session,
        org_id=card.org_id,
        actor_id=identity.user_id,
        kind=EventKind.CARD_CREATED,
        card_id=card.id,
        board_id=card.board_id,
        board_context_ids=[card.board_id],
        payload=EventPayload(title=card.title),
        at=now,
    )
    return card


# Fields whose changes are announced, with the event and payload they produce
_TRACKED_FIELDS = {
    "title": (EventKind.CARD_TITLE_CHANGED, "title"),
    "status": (EventKind.CARD_STATUS_CHANGED, "to_status"),
    "assigned_to": (EventKind.CARD_ASSIGNEE_CHANGED, "to_assignee"),
}


async def update_card(
    session: AsyncSession,
    identity: Identity,
    card_id: uuid.UUID,
    card_in: CardUpdate,
    *,
    now: datetime | None = None,
) -> Card:
    """Apply a partial update; log one event per changed tracked field."""
    now = now or utcnow()
    card = await get_card_or_404(session, card_id, identity)
    await _require_editor(session, card.board_id, identity)

    changed_any = False
    changes = []
    for field, value in card_in.model_dump(exclude_unset=True).items():
        if getattr(card, field) == value:
            continue
        setattr(card, field, value)
        changed_any = True
        if field in _TRACKED_FIELDS:
            changes.append(field)

    if not changed_any:
        return card

    card.updated_at = now
    session.add(card)
    await session.flush()

    for field in changes:
        kind, payload_key = _TRACKED_FIELDS[field]
        await activity.log_event(
            session,
            org_id=card.org_id,
            actor_id=identity.user_id,
            kind=kind,
            card_id=card.id,
            board_id=card.board_id,
            board_context_ids=[card.board_id],
            payload=EventPayload(**{payload_key: getattr(card, field)}),
            at=now,
        )
    return card


async def move_card(
    session: AsyncSession,
    identity: Identity,
    card_id: uuid.UUID,
    to_board_id: Optional[uuid.UUID],
    *,
    now: datetime | None = None,
) -> Card:
    """Move a card to another board (or off any board)."""
    now = now or utcnow()
    card = await get_card_or_404(session, card_id, identity)
    from_board_id = card.board_id
    if from_board_id == to_board_id:
        return card

    await _require_editor(session, from_board_id, identity)
    await _require_editor(session, to_board_id, identity)

    card.board_id = to_board_id
    card.updated_at = now
    session.add(card)
    await session.flush()

    await activity.log_event(
        session,
        org_id=card.org_id,
        actor_id=identity.user_id,
        kind=EventKind.CARD_BOARD_CHANGED,
        card_id=card.id,
        board_id=to_board_id,
        board_context_ids=[from_board_id, to_board_id],
        payload=EventPayload(from_board_id=from_board_id, to_board_id=to_board_id),
        at=now,
    )
    log.info(
        "cards.moved",
        card_id=str(card.id),
        from_board_id=str(from_board_id) if from_board_id else None,
        to_board_id=str(to_board_id) if to_board_id else None,
    )
    return card


async def delete_card(
    session: AsyncSession,
    identity: Identity,
    card_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> None:
    now = now or utcnow()
    card = await get_card_or_404(session, card_id, identity)
    await _require_editor(session, card.board_id, identity)

    await activity.log_card_deleted_batch(
        session, org_id=card.org_id, actor_id=identity.user_id, cards=[card], at=now
    )
    await session.execute(delete(Comment).where(Comment.card_id == card.id))
    await session.delete(card)
    await session.flush()
    log.info("cards.deleted", card_id=str(card_id))


async def add_comment(
    session: AsyncSession,
    identity: Identity,
    card_id: uuid.UUID,
    content: str,
    *,
    now: datetime | None = None,
) -> Comment:
    """Comment on a card. Anyone who can view the card's board may comment."""
    now = now or utcnow()
    card = await get_card_or_404(session, card_id, identity)
    if card.board_id is not None:
        board = await get_board_or_404(session, card.board_id, identity)
        role = await role_of(session, board.id, identity.user_id)
        if not can_view_board(board, role, identity):
            raise NotAuthorized("Commenting requires access to the board")

    comment = Comment(
        card_id=card.id,
        org_id=card.org_id,
        author_id=identity.user_id,
        content=content,
        created_at=now,
    )
    session.add(comment)
    await session.flush()

    await activity.log_event(
        session,
        org_id=card.org_id,
        actor_id=identity.user_id,
        kind=EventKind.COMMENT_CREATED,
        card_id=card.id,
        board_id=card.board_id,
        board_context_ids=[card.board_id],
        payload=EventPayload(comment_id=comment.id),
        at=now,
    )
    return comment
