"""Card and comment schemas shared by the server and API clients."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

class CardCreate(BaseModel):
    title: str
    description: str = ""
    board_id: Optional[UUID] = None
    status: Optional[str] = None
    assigned_to: Optional[UUID] = None


class CardUpdate(BaseModel):
    """PATCH body. Only fields that are explicitly set are applied."""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Optional[UUID] = None


class CardMove(BaseModel):
    """Request body for POST /cards/{cardId}/move. ``None`` unassigns the card."""
    to_board_id: Optional[UUID] = None


class CardRead(BaseModel):
    id: UUID
    org_id: UUID
    board_id: Optional[UUID] = None
    title: str
    description: str
    status: Optional[str] = None
    assigned_to: Optional[UUID] = None
    author_id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

class CommentCreate(BaseModel):
    content: str


class CommentRead(BaseModel):
    id: UUID
    card_id: UUID
    author_id: UUID
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}
