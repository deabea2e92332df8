# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .board import Board  # noqa: F401
from .membership import BoardMembership  # noqa: F401
from .card import Card, Comment  # noqa: F401
from .follow_interval import FollowInterval  # noqa: F401
from .event import Event  # noqa: F401
from .feed_item import FeedItem  # noqa: F401
