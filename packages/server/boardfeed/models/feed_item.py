"""Materialized per-user feed entries (written only by fan-out)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class FeedItem(SQLModel, table=True):
    __tablename__ = "feed_items"
    __table_args__ = (
        sa.UniqueConstraint("event_id", "user_id", name="uq_feed_items_event_user"),
        sa.Index("ix_feed_items_user_org_id", "user_id", "org_id", "id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)  # insertion-order cursor
    org_id: uuid.UUID = Field(nullable=False)
    user_id: uuid.UUID = Field(nullable=False)
    event_id: int = Field(foreign_key="events.id", nullable=False)
    event_time: datetime = Field(nullable=False, sa_type=sa.DateTime())
    card_id: Optional[uuid.UUID] = None
    board_id: Optional[uuid.UUID] = None
