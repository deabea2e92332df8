"""Card and comment models."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, utcnow


class Card(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "cards"

    org_id: uuid.UUID = Field(nullable=False, index=True)
    board_id: Optional[uuid.UUID] = Field(default=None, foreign_key="boards.id", index=True)
    title: str = Field(nullable=False)
    description: str = Field(default="", nullable=False)
    status: Optional[str] = None  # someday | next_up | done | custom column id
    assigned_to: Optional[uuid.UUID] = None
    author_id: uuid.UUID = Field(nullable=False)


class Comment(UUIDMixin, SQLModel, table=True):
    __tablename__ = "comments"

    card_id: uuid.UUID = Field(foreign_key="cards.id", nullable=False, index=True)
    org_id: uuid.UUID = Field(nullable=False, index=True)
    author_id: uuid.UUID = Field(nullable=False)
    content: str = Field(nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
