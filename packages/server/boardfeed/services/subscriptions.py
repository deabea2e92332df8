"""
Subscription Interval Store.

Follows and mutes are stored as intervals ``[started_at, ended_at)`` that are
opened and closed, never deleted, so fan-out can ask who was subscribed at
any past instant. At most one interval per (subject, user, mode) is open.

Rules:
- Following a board closes the user's open mutes on that board's cards.
- Following a card closes the user's mute on that card, and muting a card
  closes the user's follow on that card. Muting never touches board follows.
- Unfollowing a board also closes the user's open mutes on its cards.
- Toggles that are already in the requested state are no-ops.
- Owners and editors may add or remove board watchers on behalf of others.
- A user's own board follow toggles and card mute toggles are logged as events.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from boardfeed.core.auth import Identity
from boardfeed.core.errors import NotAuthorized
from boardfeed.models.base import utcnow
from boardfeed.models.board import Board
from boardfeed.models.card import Card
from boardfeed.models.follow_interval import FollowInterval
from boardfeed.services import activity
from boardfeed.services.cards import get_card_or_404
from boardfeed.services.membership import get_board_or_404, is_editor, role_of
from boardfeed_shared.schemas.activity import EventPayload
from boardfeed_shared.schemas.common import EventKind, IntervalMode, IntervalScope

log = structlog.get_logger()

# Columns of the partial unique index over open intervals
_ACTIVE_KEY = ["org_id", "scope", "subject_id", "user_id", "mode"]


# ---------------------------------------------------------------------------
# Interval primitives
# ---------------------------------------------------------------------------


async def _open_interval(
    session: AsyncSession,
    org_id: uuid.UUID,
    scope: IntervalScope,
    subject_id: uuid.UUID,
    user_id: uuid.UUID,
    mode: IntervalMode,
) -> Optional[FollowInterval]:
    result = await session.execute(
        select(FollowInterval).where(
            FollowInterval.org_id == org_id,
            FollowInterval.scope == scope.value,
            FollowInterval.subject_id == subject_id,
            FollowInterval.user_id == user_id,
            FollowInterval.mode == mode.value,
            FollowInterval.ended_at.is_(None),
        )
    )
    return result.scalars().first()


async def start_interval(
    session: AsyncSession,
    org_id: uuid.UUID,
    scope: IntervalScope,
    subject_id: uuid.UUID,
    user_id: uuid.UUID,
    mode: IntervalMode,
    now: datetime,
) -> bool:
    """Open an interval. Returns False if one was already open.

    A concurrent writer may open the same interval between the read and the
    insert; the partial unique index turns that insert into a no-op.
    """
    if await _open_interval(session, org_id, scope, subject_id, user_id, mode):
        return False
    row = {
        "org_id": org_id,
        "scope": scope.value,
        "subject_id": subject_id,
        "user_id": user_id,
        "mode": mode.value,
        "started_at": now,
    }
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(FollowInterval).values(row)
    elif dialect == "sqlite":
        stmt = sqlite.insert(FollowInterval).values(row)
    else:
        session.add(FollowInterval(**row))
        await session.flush()
        return True
    result = await session.execute(
        stmt.on_conflict_do_nothing(
            index_elements=_ACTIVE_KEY,
            index_where=FollowInterval.ended_at.is_(None),
        )
    )
    return result.rowcount == 1


async def end_interval(
    session: AsyncSession,
    org_id: uuid.UUID,
    scope: IntervalScope,
    subject_id: uuid.UUID,
    user_id: uuid.UUID,
    mode: IntervalMode,
    now: datetime,
) -> bool:
    """Close the open interval. Returns False if there was none."""
    interval = await _open_interval(session, org_id, scope, subject_id, user_id, mode)
    if interval is None:
        return False
    interval.ended_at = now
    session.add(interval)
    await session.flush()
    return True


async def _end_card_mutes_on_board(
    session: AsyncSession,
    org_id: uuid.UUID,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime,
) -> int:
    card_ids = select(Card.id).where(Card.board_id == board_id)
    result = await session.execute(
        select(FollowInterval).where(
            FollowInterval.org_id == org_id,
            FollowInterval.scope == IntervalScope.CARD.value,
            FollowInterval.subject_id.in_(card_ids),
            FollowInterval.user_id == user_id,
            FollowInterval.mode == IntervalMode.MUTE.value,
            FollowInterval.ended_at.is_(None),
        )
    )
    mutes = list(result.scalars().all())
    for interval in mutes:
        interval.ended_at = now
        session.add(interval)
    if mutes:
        await session.flush()
    return len(mutes)


async def is_active(
    session: AsyncSession,
    org_id: uuid.UUID,
    scope: IntervalScope,
    subject_id: uuid.UUID,
    user_id: uuid.UUID,
    mode: IntervalMode,
    now: datetime | None = None,
) -> bool:
    interval = await _open_interval(session, org_id, scope, subject_id, user_id, mode)
    return interval is not None and interval.is_active(now or utcnow())


async def active_user_ids(
    session: AsyncSession,
    org_id: uuid.UUID,
    scope: IntervalScope,
    subject_id: uuid.UUID,
    mode: IntervalMode,
    now: datetime | None = None,
) -> set[uuid.UUID]:
    """Users with an active interval on one subject."""
    now = now or utcnow()
    result = await session.execute(
        select(FollowInterval.user_id).where(
            FollowInterval.org_id == org_id,
            FollowInterval.scope == scope.value,
            FollowInterval.subject_id == subject_id,
            FollowInterval.mode == mode.value,
            FollowInterval.started_at <= now,
            FollowInterval.ended_at.is_(None),
        )
    )
    return set(result.scalars().all())


# ---------------------------------------------------------------------------
# Board follows
# ---------------------------------------------------------------------------


async def _activate_board_follow(
    session: AsyncSession, board: Board, user_id: uuid.UUID, now: datetime
) -> bool:
    started = await start_interval(
        session, board.org_id, IntervalScope.BOARD, board.id, user_id, IntervalMode.FOLLOW, now
    )
    if not started:
        return False
    cleared = await _end_card_mutes_on_board(session, board.org_id, board.id, user_id, now)
    log.info(
        "subscriptions.board_followed",
        board_id=str(board.id),
        user_id=str(user_id),
        cleared_mutes=cleared,
    )
    return True


async def _deactivate_board_follow(
    session: AsyncSession, board: Board, user_id: uuid.UUID, now: datetime
) -> bool:
    ended = await end_interval(
        session, board.org_id, IntervalScope.BOARD, board.id, user_id, IntervalMode.FOLLOW, now
    )
    if not ended:
        return False
    cleared = await _end_card_mutes_on_board(session, board.org_id, board.id, user_id, now)
    log.info(
        "subscriptions.board_unfollowed",
        board_id=str(board.id),
        user_id=str(user_id),
        cleared_mutes=cleared,
    )
    return True


async def _log_board_subscription(
    session: AsyncSession, board: Board, identity: Identity, kind: EventKind, now: datetime
) -> None:
    await activity.log_event(
        session,
        org_id=board.org_id,
        actor_id=identity.user_id,
        kind=kind,
        board_id=board.id,
        board_context_ids=[board.id],
        payload=EventPayload(board_name=board.name),
        at=now,
    )


async def follow_board(
    session: AsyncSession,
    identity: Identity,
    board_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Start following a board. Returns True if a new interval was opened."""
    board = await get_board_or_404(session, board_id, identity)
    now = now or utcnow()
    if not await _activate_board_follow(session, board, identity.user_id, now):
        return False
    await _log_board_subscription(session, board, identity, EventKind.USER_SUBSCRIBED_TO_BOARD, now)
    return True


async def unfollow_board(
    session: AsyncSession,
    identity: Identity,
    board_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    board = await get_board_or_404(session, board_id, identity)
    now = now or utcnow()
    if not await _deactivate_board_follow(session, board, identity.user_id, now):
        return False
    await _log_board_subscription(
        session, board, identity, EventKind.USER_UNSUBSCRIBED_FROM_BOARD, now
    )
    return True


async def _require_watcher_manager(
    session: AsyncSession, board_id: uuid.UUID, identity: Identity
) -> Board:
    board = await get_board_or_404(session, board_id, identity)
    if not is_editor(await role_of(session, board.id, identity.user_id)):
        raise NotAuthorized("Only owners or editors can manage board watchers")
    return board


async def add_board_watcher(
    session: AsyncSession,
    identity: Identity,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Make another user of the tenant follow a board. Owner or editor only."""
    board = await _require_watcher_manager(session, board_id, identity)
    return await _activate_board_follow(session, board, user_id, now or utcnow())


async def remove_board_watcher(
    session: AsyncSession,
    identity: Identity,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> bool:
    """Stop another user following a board. Owner or editor only."""
    board = await _require_watcher_manager(session, board_id, identity)
    return await _deactivate_board_follow(session, board, user_id, now or utcnow())


async def subscribe_user_to_board(
    session: AsyncSession,
    org_id: uuid.UUID,
    board_id: uuid.UUID,
    user_id: uuid.UUID,
    at: datetime | None = None,
) -> bool:
    """Deferred auto-subscribe after a role grant, starting at the grant time. Idempotent."""
    board = await session.get(Board, board_id)
    if board is None or board.org_id != org_id:
        log.info("subscriptions.auto_subscribe_skipped", board_id=str(board_id))
        return False
    return await _activate_board_follow(session, board, user_id, at or utcnow())


# ---------------------------------------------------------------------------
# Card follows and mutes
# ---------------------------------------------------------------------------


async def _toggle_card(
    session: AsyncSession,
    identity: Identity,
    card_id: uuid.UUID,
    mode: IntervalMode,
    active: bool,
    now: datetime | None,
) -> bool:
    card = await get_card_or_404(session, card_id, identity)
    now = now or utcnow()
    user_id = identity.user_id

    if not active:
        changed = await end_interval(
            session, card.org_id, IntervalScope.CARD, card.id, user_id, mode, now
        )
    else:
        changed = await start_interval(
            session, card.org_id, IntervalScope.CARD, card.id, user_id, mode, now
        )
        if changed:
            # Follow and mute on the same card exclude each other
            other = IntervalMode.MUTE if mode == IntervalMode.FOLLOW else IntervalMode.FOLLOW
            await end_interval(
                session, card.org_id, IntervalScope.CARD, card.id, user_id, other, now
            )

    if changed:
        log.info(
            "subscriptions.card_toggled",
            card_id=str(card.id),
            user_id=str(user_id),
            mode=mode.value,
            active=active,
        )
        if mode == IntervalMode.MUTE:
            await activity.log_event(
                session,
                org_id=card.org_id,
                actor_id=user_id,
                kind=EventKind.USER_MUTED_CARD if active else EventKind.USER_UNMUTED_CARD,
                card_id=card.id,
                board_id=card.board_id,
                board_context_ids=[card.board_id],
                payload=EventPayload(title=card.title),
                at=now,
            )
    return changed


async def follow_card(
    session: AsyncSession, identity: Identity, card_id: uuid.UUID, *, now: datetime | None = None
) -> bool:
    return await _toggle_card(session, identity, card_id, IntervalMode.FOLLOW, True, now)


async def unfollow_card(
    session: AsyncSession, identity: Identity, card_id: uuid.UUID, *, now: datetime | None = None
) -> bool:
    return await _toggle_card(session, identity, card_id, IntervalMode.FOLLOW, False, now)


async def mute_card(
    session: AsyncSession, identity: Identity, card_id: uuid.UUID, *, now: datetime | None = None
) -> bool:
    return await _toggle_card(session, identity, card_id, IntervalMode.MUTE, True, now)


async def unmute_card(
    session: AsyncSession, identity: Identity, card_id: uuid.UUID, *, now: datetime | None = None
) -> bool:
    return await _toggle_card(session, identity, card_id, IntervalMode.MUTE, False, now)
