"""Activity schemas: event payloads, feed pages, and subscription state."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import EventKind


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class EventPayload(BaseModel):
    """Kind-specific optional fields attached to an event."""
    title: Optional[str] = None
    comment_id: Optional[UUID] = None
    to_status: Optional[str] = None
    to_assignee: Optional[UUID] = None
    from_board_id: Optional[UUID] = None
    to_board_id: Optional[UUID] = None
    deleted_title: Optional[str] = None
    target_user_id: Optional[UUID] = None
    role: Optional[str] = None
    board_name: Optional[str] = None
    announcement_title: Optional[str] = None  # set by announcement producers

    def to_json(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class EventRead(BaseModel):
    id: int
    org_id: UUID
    actor_id: UUID
    card_id: Optional[UUID] = None
    board_id: Optional[UUID] = None
    kind: EventKind
    payload: EventPayload = Field(default_factory=EventPayload)
    timestamp: datetime


class EventPage(BaseModel):
    page: List[EventRead] = Field(default_factory=list)
    is_done: bool = True
    continue_cursor: str = ""


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

class FeedItemRead(BaseModel):
    id: int
    user_id: UUID
    event_id: int
    event_time: datetime
    card_id: Optional[UUID] = None
    board_id: Optional[UUID] = None


class FeedEntry(BaseModel):
    feed_item: FeedItemRead
    # None when the event is gone or belongs to another tenant
    event: Optional[EventRead] = None


class FeedPage(BaseModel):
    page: List[FeedEntry] = Field(default_factory=list)
    is_done: bool = True
    continue_cursor: str = ""


# ---------------------------------------------------------------------------
# Subscription state
# ---------------------------------------------------------------------------

class FollowState(BaseModel):
    is_following_card: bool = False
    is_muting_card: bool = False
    is_watching_card: bool = False


class BoardFollowState(BaseModel):
    is_following_board: bool = False
