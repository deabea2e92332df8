"""Board membership: one role row per (board, user)."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class BoardMembership(SQLModel, table=True):
    __tablename__ = "board_memberships"

    board_id: uuid.UUID = Field(foreign_key="boards.id", primary_key=True)
    user_id: uuid.UUID = Field(primary_key=True, index=True)
    org_id: uuid.UUID = Field(nullable=False, index=True)
    role: str = Field(nullable=False)  # owner | editor | viewer
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
    updated_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
