"""
Event Log and Fan-Out Engine.

Logging an event appends one immutable row and defers a fan-out job keyed by
the event's card (or board), so events on one card fan out in log order.

Fan-out computes recipients against the subscription state in effect at the
event's own timestamp:

    recipients = (card followers  ∪  board followers over the event's boards)
                 \\ card muters

and writes one feed item per recipient. Feed items are unique per
(event, user), so a retried job never produces duplicates.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from boardfeed.core.auth import Identity
from boardfeed.core.errors import InvalidCursor
from boardfeed.core.jobs import DeferredJob, defer
from boardfeed.models.base import utcnow
from boardfeed.models.card import Card
from boardfeed.models.event import Event
from boardfeed.models.feed_item import FeedItem
from boardfeed.models.follow_interval import FollowInterval
from boardfeed_shared.schemas.activity import EventPage, EventPayload, EventRead
from boardfeed_shared.schemas.common import EventKind, IntervalMode, IntervalScope

log = structlog.get_logger()

FAN_OUT_JOB = "fan_out_event"


def _context_ids(ids: Iterable[Optional[uuid.UUID]]) -> list[str]:
    seen: list[str] = []
    for board_id in ids:
        if board_id is not None and str(board_id) not in seen:
            seen.append(str(board_id))
    return seen


def parse_cursor(cursor: Optional[str]) -> Optional[int]:
    """Cursors are the id of the last row returned; empty means start."""
    if not cursor:
        return None
    try:
        value = int(cursor)
    except ValueError:
        raise InvalidCursor()
    if value < 1:
        raise InvalidCursor()
    return value


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------


async def log_event(
    session: AsyncSession,
    *,
    org_id: uuid.UUID,
    actor_id: uuid.UUID,
    kind: EventKind,
    card_id: uuid.UUID | None = None,
    board_id: uuid.UUID | None = None,
    board_context_ids: Iterable[Optional[uuid.UUID]] = (),
    payload: EventPayload | None = None,
    at: datetime | None = None,
) -> Event:
    """Append an event and defer its fan-out until the transaction commits."""
    event = Event(
        org_id=org_id,
        actor_id=actor_id,
        card_id=card_id,
        board_id=board_id,
        kind=EventKind(kind).value,
        payload=(payload or EventPayload()).to_json(),
        board_context_ids=_context_ids(board_context_ids),
        timestamp=at or utcnow(),
    )
    session.add(event)
    await session.flush()

    defer(
        session,
        DeferredJob(
            name=FAN_OUT_JOB,
            shard_key=str(card_id or board_id or event.id),
            kwargs={"event_id": event.id},
            dedupe_id=f"{FAN_OUT_JOB}:{event.id}",
        ),
    )
    log.info(
        "activity.event_logged",
        event_id=event.id,
        kind=event.kind,
        card_id=str(card_id) if card_id else None,
        board_id=str(board_id) if board_id else None,
    )
    return event


async def log_card_deleted_batch(
    session: AsyncSession,
    *,
    org_id: uuid.UUID,
    actor_id: uuid.UUID,
    cards: Sequence[Card],
    at: datetime | None = None,
) -> list[Event]:
    """Log one card_deleted event per card, before the cards go away."""
    at = at or utcnow()
    events = []
    for card in cards:
        events.append(
            await log_event(
                session,
                org_id=org_id,
                actor_id=actor_id,
                kind=EventKind.CARD_DELETED,
                card_id=card.id,
                board_id=card.board_id,
                board_context_ids=[card.board_id],
                payload=EventPayload(deleted_title=card.title),
                at=at,
            )
        )
    return events


def event_to_read(event: Event) -> EventRead:
    return EventRead(
        id=event.id,
        org_id=event.org_id,
        actor_id=event.actor_id,
        card_id=event.card_id,
        board_id=event.board_id,
        kind=EventKind(event.kind),
        payload=EventPayload(**(event.payload or {})),
        timestamp=event.timestamp,
    )


async def list_card_events(
    session: AsyncSession,
    identity: Optional[Identity],
    card_id: uuid.UUID,
    cursor: Optional[str] = None,
    page_size: int = 25,
) -> EventPage:
    """Events for one card, newest first. Empty for anonymous or foreign callers."""
    if identity is None:
        return EventPage()
    before = parse_cursor(cursor)

    stmt = select(Event).where(Event.card_id == card_id, Event.org_id == identity.org_id)
    if before is not None:
        stmt = stmt.where(Event.id < before)
    stmt = stmt.order_by(Event.id.desc()).limit(page_size + 1)

    result = await session.execute(stmt)
    rows = list(result.scalars().all())
    is_done = len(rows) <= page_size
    rows = rows[:page_size]
    return EventPage(
        page=[event_to_read(e) for e in rows],
        is_done=is_done,
        continue_cursor="" if is_done else str(rows[-1].id),
    )


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------


def resolve_recipients(
    card_followers: Iterable[uuid.UUID],
    board_followers: Iterable[uuid.UUID],
    muted: Iterable[uuid.UUID],
) -> set[uuid.UUID]:
    return (set(card_followers) | set(board_followers)) - set(muted)


async def _users_covered_at(
    session: AsyncSession,
    org_id: uuid.UUID,
    scope: IntervalScope,
    subject_ids: Sequence[uuid.UUID],
    mode: IntervalMode,
    at: datetime,
) -> set[uuid.UUID]:
    if not subject_ids:
        return set()
    result = await session.execute(
        select(FollowInterval.user_id).where(
            FollowInterval.org_id == org_id,
            FollowInterval.scope == scope.value,
            FollowInterval.subject_id.in_(subject_ids),
            FollowInterval.mode == mode.value,
            FollowInterval.started_at <= at,
            or_(FollowInterval.ended_at.is_(None), FollowInterval.ended_at > at),
        )
    )
    return set(result.scalars().all())


async def compute_recipients(
    session: AsyncSession,
    *,
    org_id: uuid.UUID,
    card_id: uuid.UUID | None,
    board_context_ids: Sequence[uuid.UUID],
    at: datetime,
) -> set[uuid.UUID]:
    card_ids = [card_id] if card_id else []
    card_followers = await _users_covered_at(
        session, org_id, IntervalScope.CARD, card_ids, IntervalMode.FOLLOW, at
    )
    muted = await _users_covered_at(
        session, org_id, IntervalScope.CARD, card_ids, IntervalMode.MUTE, at
    )
    board_followers = await _users_covered_at(
        session, org_id, IntervalScope.BOARD, list(board_context_ids), IntervalMode.FOLLOW, at
    )
    return resolve_recipients(card_followers, board_followers, muted)


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


async def _insert_feed_items(session: AsyncSession, rows: list[dict]) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(FeedItem).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite.insert(FeedItem).values(rows)
    else:
        for row in rows:
            session.add(FeedItem(**row))
        await session.flush()
        return
    await session.execute(stmt.on_conflict_do_nothing(index_elements=["event_id", "user_id"]))


async def fan_out_event(session: AsyncSession, event_id: int) -> int:
    """Materialize feed items for one event. Returns the number written.

    Safe to run more than once for the same event.
    """
    event = await session.get(Event, event_id)
    if event is None:
        log.warning("fanout.event_missing", event_id=event_id)
        return 0

    recipients = await compute_recipients(
        session,
        org_id=event.org_id,
        card_id=event.card_id,
        board_context_ids=[uuid.UUID(b) for b in event.board_context_ids or []],
        at=event.timestamp,
    )

    existing = await session.execute(
        select(FeedItem.user_id).where(FeedItem.event_id == event.id)
    )
    pending = sorted(recipients - set(existing.scalars().all()), key=str)
    if pending:
        await _insert_feed_items(
            session,
            [
                {
                    "org_id": event.org_id,
                    "user_id": user_id,
                    "event_id": event.id,
                    "event_time": event.timestamp,
                    "card_id": event.card_id,
                    "board_id": event.board_id,
                }
                for user_id in pending
            ],
        )

    log.info(
        "fanout.completed",
        event_id=event.id,
        kind=event.kind,
        recipients=len(recipients),
        written=len(pending),
    )
    return len(pending)
