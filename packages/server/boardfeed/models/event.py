"""Event model (append-only, tenant-scoped, immutable)."""

from datetime import datetime
from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class Event(SQLModel, table=True):
    __tablename__ = "events"
    __table_args__ = (
        sa.Index("ix_events_card_id_id", "card_id", "id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)  # insertion order
    org_id: uuid.UUID = Field(nullable=False, index=True)
    actor_id: uuid.UUID = Field(nullable=False)
    card_id: Optional[uuid.UUID] = Field(default=None)
    board_id: Optional[uuid.UUID] = Field(default=None, index=True)
    kind: str = Field(nullable=False)  # EventKind value
    payload: dict = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    # Boards whose followers receive this event, captured when it is logged
    board_context_ids: List[str] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)
    timestamp: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
