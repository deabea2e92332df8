"""Board model (tenant-scoped container for cards)."""

import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Board(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "boards"

    org_id: uuid.UUID = Field(nullable=False, index=True)
    name: str = Field(nullable=False)
    visibility: str = Field(default="private", nullable=False)  # public | private | restricted
    created_by: uuid.UUID = Field(nullable=False)
