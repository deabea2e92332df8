"""
Board Membership Authority: per-board roles and their invariants.

Roles are a single ordered value per (board, user): owner > editor > viewer.
A higher role subsumes every lower one, so the hierarchy predicates compare
the one stored role instead of checking separate lists.

Protected invariants:
- A board always has at least one owner (LastOwnerViolation).
- An owner cannot remove themselves (SelfRemovalViolation).

Every successful grant defers an auto-subscribe of the target to the board and
logs a membership event; every revoke logs a membership event.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from boardfeed.core.auth import Identity
from boardfeed.core.errors import LastOwnerViolation, NotAuthorized, NotFound, SelfRemovalViolation
from boardfeed.core.jobs import DeferredJob, defer
from boardfeed.models.base import utcnow
from boardfeed.models.board import Board
from boardfeed.models.membership import BoardMembership
from boardfeed.services import activity
from boardfeed_shared.schemas.activity import EventPayload
from boardfeed_shared.schemas.common import (
    ROLE_GRANTED_EVENTS,
    ROLE_REVOKED_EVENTS,
    BoardRole,
    BoardVisibility,
    role_at_least,
    role_rank,
)

log = structlog.get_logger()

SUBSCRIBE_JOB = "subscribe_user_to_board"


# ---------------------------------------------------------------------------
# Hierarchy predicates
# ---------------------------------------------------------------------------


def is_owner(role: Optional[BoardRole]) -> bool:
    return role_at_least(role, BoardRole.OWNER)


def is_editor(role: Optional[BoardRole]) -> bool:
    """Owner or editor."""
    return role_at_least(role, BoardRole.EDITOR)


def is_viewer(role: Optional[BoardRole]) -> bool:
    """Any role at all."""
    return role_at_least(role, BoardRole.VIEWER)


def can_view_board(board: Board, role: Optional[BoardRole], identity: Optional[Identity]) -> bool:
    """Public boards are open to anyone, private ones to the tenant, restricted ones to members."""
    if board.visibility == BoardVisibility.PUBLIC.value:
        return True
    if identity is None or identity.org_id != board.org_id:
        return False
    if board.visibility == BoardVisibility.RESTRICTED.value:
        return is_viewer(role)
    return True


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_board_or_404(
    session: AsyncSession, board_id: uuid.UUID, identity: Identity
) -> Board:
    board = await session.get(Board, board_id)
    if not board:
        raise NotFound("Board not found")
    identity.require_tenant(board.org_id)
    return board


async def role_of(
    session: AsyncSession, board_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[BoardRole]:
    membership = await session.get(BoardMembership, (board_id, user_id))
    return BoardRole(membership.role) if membership else None


async def count_owners(session: AsyncSession, board_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count()).select_from(BoardMembership).where(
            BoardMembership.board_id == board_id,
            BoardMembership.role == BoardRole.OWNER.value,
        )
    )
    return result.scalar_one()


async def list_members(session: AsyncSession, board_id: uuid.UUID) -> list[BoardMembership]:
    """Membership rows, highest role first."""
    result = await session.execute(
        select(BoardMembership).where(BoardMembership.board_id == board_id)
    )
    rows = list(result.scalars().all())
    rows.sort(key=lambda m: (-role_rank(BoardRole(m.role)), str(m.user_id)))
    return rows


# ---------------------------------------------------------------------------
# Grants and revokes
# ---------------------------------------------------------------------------


def _defer_subscribe(
    session: AsyncSession, board: Board, user_id: uuid.UUID, at: datetime
) -> None:
    defer(
        session,
        DeferredJob(
            name=SUBSCRIBE_JOB,
            shard_key=str(board.id),
            kwargs={
                "org_id": board.org_id,
                "board_id": board.id,
                "user_id": user_id,
                "at": at,
            },
        ),
    )


async def bootstrap_owner(
    session: AsyncSession,
    board: Board,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> BoardMembership:
    """Make the creator of a fresh board its first owner.

    No actor check is possible yet and no event is logged; the creator is
    still auto-subscribed.
    """
    now = now or utcnow()
    membership = BoardMembership(
        board_id=board.id,
        user_id=user_id,
        org_id=board.org_id,
        role=BoardRole.OWNER.value,
        created_at=now,
        updated_at=now,
    )
    session.add(membership)
    await session.flush()
    _defer_subscribe(session, board, user_id, now)
    return membership


async def assign_role(
    session: AsyncSession,
    board_id: uuid.UUID,
    actor: Identity,
    target_user_id: uuid.UUID,
    role: BoardRole,
    *,
    now: datetime | None = None,
) -> Optional[BoardMembership]:
    """Grant ``role`` to a user on a board.

    Granting owner requires the actor to be an owner; granting editor or
    viewer requires owner or editor. A role already held or implied by a
    higher held role is a no-op: nothing is written, subscribed, or logged.
    """
    role = BoardRole(role)
    now = now or utcnow()
    board = await get_board_or_404(session, board_id, actor)

    actor_role = await role_of(session, board.id, actor.user_id)
    if role == BoardRole.OWNER:
        if not is_owner(actor_role):
            raise NotAuthorized("Only owners can add owners")
    elif not is_editor(actor_role):
        raise NotAuthorized(f"Only owners or editors can add {role.value}s")

    membership = await session.get(BoardMembership, (board.id, target_user_id))
    current = BoardRole(membership.role) if membership else None
    if role_at_least(current, role):
        log.debug(
            "membership.role_implied",
            board_id=str(board.id),
            user_id=str(target_user_id),
            held=current.value,
            requested=role.value,
        )
        return membership

    if membership:
        membership.role = role.value
        membership.updated_at = now
        session.add(membership)
    else:
        membership = BoardMembership(
            board_id=board.id,
            user_id=target_user_id,
            org_id=board.org_id,
            role=role.value,
            created_at=now,
            updated_at=now,
        )
        session.add(membership)
    await session.flush()

    _defer_subscribe(session, board, target_user_id, now)
    await activity.log_event(
        session,
        org_id=board.org_id,
        actor_id=actor.user_id,
        kind=ROLE_GRANTED_EVENTS[role],
        board_id=board.id,
        board_context_ids=[board.id],
        payload=EventPayload(
            target_user_id=target_user_id,
            role=role.value,
            board_name=board.name,
        ),
        at=now,
    )

    log.info(
        "membership.role_assigned",
        board_id=str(board.id),
        user_id=str(target_user_id),
        role=role.value,
        previous=current.value if current else None,
        actor_id=str(actor.user_id),
    )
    return membership


async def remove_member(
    session: AsyncSession,
    board_id: uuid.UUID,
    actor: Identity,
    target_user_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Remove a user's role on a board. Returns False if they held none.

    The last-owner invariant is checked before anything else, so removing the
    sole owner always fails with LastOwnerViolation. Removing an owner needs
    an owner actor; removing an editor or viewer needs owner or editor, except
    that members below owner may always leave on their own.
    """
    now = now or utcnow()
    board = await get_board_or_404(session, board_id, actor)

    membership = await session.get(BoardMembership, (board.id, target_user_id))
    if membership is None:
        return False
    target_role = BoardRole(membership.role)
    actor_role = await role_of(session, board.id, actor.user_id)

    if target_role == BoardRole.OWNER:
        if await count_owners(session, board.id) <= 1:
            raise LastOwnerViolation()
        if not is_owner(actor_role):
            raise NotAuthorized("Only owners can remove owners")
        if target_user_id == actor.user_id:
            raise SelfRemovalViolation()
    elif target_user_id != actor.user_id and not is_editor(actor_role):
        raise NotAuthorized(f"Only owners or editors can remove {target_role.value}s")

    await session.delete(membership)
    await session.flush()

    await activity.log_event(
        session,
        org_id=board.org_id,
        actor_id=actor.user_id,
        kind=ROLE_REVOKED_EVENTS[target_role],
        board_id=board.id,
        board_context_ids=[board.id],
        payload=EventPayload(
            target_user_id=target_user_id,
            role=target_role.value,
            board_name=board.name,
        ),
        at=now,
    )

    log.info(
        "membership.member_removed",
        board_id=str(board.id),
        user_id=str(target_user_id),
        role=target_role.value,
        actor_id=str(actor.user_id),
    )
    return True
