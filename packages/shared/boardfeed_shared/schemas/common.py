from enum import Enum
from typing import Optional
from pydantic import BaseModel

class BoardVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    RESTRICTED = "restricted"

class BoardRole(str, Enum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

# Ordered lowest to highest; a higher role subsumes every lower one
BOARD_ROLE_ORDER: list["BoardRole"] = [
    BoardRole.VIEWER,
    BoardRole.EDITOR,
    BoardRole.OWNER,
]

def role_rank(role: Optional[BoardRole]) -> int:
    """Position of a role in the hierarchy; -1 for no role."""
    if role is None:
        return -1
    return BOARD_ROLE_ORDER.index(BoardRole(role))

def role_at_least(role: Optional[BoardRole], minimum: BoardRole) -> bool:
    return role_rank(role) >= role_rank(minimum)

class IntervalScope(str, Enum):
    CARD = "card"
    BOARD = "board"

class IntervalMode(str, Enum):
    FOLLOW = "follow"
    MUTE = "mute"

class EventKind(str, Enum):
    CARD_CREATED = "card_created"
    CARD_DELETED = "card_deleted"
    CARD_TITLE_CHANGED = "card_title_changed"
    CARD_STATUS_CHANGED = "card_status_changed"
    CARD_ASSIGNEE_CHANGED = "card_assignee_changed"
    CARD_BOARD_CHANGED = "card_board_changed"
    COMMENT_CREATED = "comment_created"
    USER_ADDED_TO_BOARD = "user_added_to_board"
    USER_REMOVED_FROM_BOARD = "user_removed_from_board"
    USER_ADDED_AS_BOARD_EDITOR = "user_added_as_board_editor"
    USER_REMOVED_AS_BOARD_EDITOR = "user_removed_as_board_editor"
    USER_ADDED_AS_BOARD_OWNER = "user_added_as_board_owner"
    USER_REMOVED_AS_BOARD_OWNER = "user_removed_as_board_owner"
    USER_SUBSCRIBED_TO_BOARD = "user_subscribed_to_board"
    USER_UNSUBSCRIBED_FROM_BOARD = "user_unsubscribed_from_board"
    USER_MUTED_CARD = "user_muted_card"
    USER_UNMUTED_CARD = "user_unmuted_card"
    # Logged by the announcements service through log_event; nothing here emits them
    ANNOUNCEMENT_CREATED = "announcement_created"
    ANNOUNCEMENT_PUBLISHED = "announcement_published"
    ANNOUNCEMENT_UPDATED = "announcement_updated"
    ANNOUNCEMENT_DELETED = "announcement_deleted"

# Event kinds logged when a role is granted / revoked
ROLE_GRANTED_EVENTS: dict["BoardRole", "EventKind"] = {
    BoardRole.VIEWER: EventKind.USER_ADDED_TO_BOARD,
    BoardRole.EDITOR: EventKind.USER_ADDED_AS_BOARD_EDITOR,
    BoardRole.OWNER: EventKind.USER_ADDED_AS_BOARD_OWNER,
}

ROLE_REVOKED_EVENTS: dict["BoardRole", "EventKind"] = {
    BoardRole.VIEWER: EventKind.USER_REMOVED_FROM_BOARD,
    BoardRole.EDITOR: EventKind.USER_REMOVED_AS_BOARD_EDITOR,
    BoardRole.OWNER: EventKind.USER_REMOVED_AS_BOARD_OWNER,
}

class ErrorBody(BaseModel):
    code: str
    message: str
    status: int

class APIError(BaseModel):
    error: ErrorBody
