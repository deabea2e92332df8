"""Follow / mute intervals (append-and-close, never deleted)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


def interval_covers(started_at: datetime, ended_at: Optional[datetime], at: datetime) -> bool:
    """True when an interval was in effect at ``at`` (half-open ``[started, ended)``)."""
    return started_at <= at and (ended_at is None or at < ended_at)


class FollowInterval(SQLModel, table=True):
    __tablename__ = "follow_intervals"
    __table_args__ = (
        sa.Index("ix_follow_intervals_subject", "scope", "subject_id", "mode"),
        sa.Index("ix_follow_intervals_user", "user_id", "scope", "mode"),
        # At most one open interval per (subject, user, mode)
        sa.Index(
            "uq_follow_intervals_active",
            "org_id",
            "scope",
            "subject_id",
            "user_id",
            "mode",
            unique=True,
            sqlite_where=sa.text("ended_at IS NULL"),
            postgresql_where=sa.text("ended_at IS NULL"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    org_id: uuid.UUID = Field(nullable=False, index=True)
    scope: str = Field(nullable=False)  # card | board
    subject_id: uuid.UUID = Field(nullable=False)
    user_id: uuid.UUID = Field(nullable=False)
    mode: str = Field(nullable=False)  # follow | mute
    started_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
    ended_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())

    def is_active(self, now: datetime) -> bool:
        """Active iff started and not yet ended."""
        return self.started_at <= now and self.ended_at is None

    def covers(self, at: datetime) -> bool:
        return interval_covers(self.started_at, self.ended_at, at)
