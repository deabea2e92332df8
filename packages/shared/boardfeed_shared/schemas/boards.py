from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from .common import BoardRole, BoardVisibility


class BoardBase(BaseModel):
    name: str
    visibility: BoardVisibility = BoardVisibility.PRIVATE


class BoardCreate(BoardBase):
    # The creator is always an owner; these lists are granted on top of that
    owner_ids: List[UUID] = Field(default_factory=list)
    editor_ids: List[UUID] = Field(default_factory=list)
    viewer_ids: List[UUID] = Field(default_factory=list)


class BoardUpdate(BaseModel):
    name: Optional[str] = None
    visibility: Optional[BoardVisibility] = None


class BoardRead(BoardBase):
    id: UUID
    org_id: UUID
    created_by: UUID
    my_role: Optional[BoardRole] = None
    created_at: datetime
    updated_at: datetime


class MemberAssign(BaseModel):
    role: BoardRole


class MemberRead(BaseModel):
    board_id: UUID
    user_id: UUID
    role: BoardRole
    updated_at: datetime

    model_config = {"from_attributes": True}


class SubscriberList(BaseModel):
    user_ids: List[UUID] = Field(default_factory=list)
