"""Boards, memberships, follow intervals, events, and feed items.

Revision ID: 0001_boardfeed_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_boardfeed_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Boards and cards
    # -----------------------------------------------------------------------

    op.create_table(
        "boards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("visibility", sa.Text(), nullable=False, server_default="private"),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_boards_id", "boards", ["id"])
    op.create_index("ix_boards_org_id", "boards", ["org_id"])

    op.create_table(
        "board_memberships",
        sa.Column("board_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("boards.id"), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_board_memberships_user_id", "board_memberships", ["user_id"])
    op.create_index("ix_board_memberships_org_id", "board_memberships", ["org_id"])

    op.create_table(
        "cards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("board_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("boards.id"), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.Text(), nullable=True),
        sa.Column("assigned_to", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("author_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_cards_id", "cards", ["id"])
    op.create_index("ix_cards_org_id", "cards", ["org_id"])
    op.create_index("ix_cards_board_id", "cards", ["board_id"])

    op.create_table(
        "comments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("card_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cards.id"), nullable=False),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("author_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_comments_id", "comments", ["id"])
    op.create_index("ix_comments_card_id", "comments", ["card_id"])
    op.create_index("ix_comments_org_id", "comments", ["org_id"])

    # -----------------------------------------------------------------------
    # 2. Follow / mute intervals
    # -----------------------------------------------------------------------

    op.create_table(
        "follow_intervals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scope", sa.Text(), nullable=False),
        sa.Column("subject_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("mode", sa.Text(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("scope IN ('card', 'board')", name="ck_follow_intervals_scope"),
        sa.CheckConstraint("mode IN ('follow', 'mute')", name="ck_follow_intervals_mode"),
    )
    op.create_index("ix_follow_intervals_org_id", "follow_intervals", ["org_id"])
    op.create_index("ix_follow_intervals_subject", "follow_intervals", ["scope", "subject_id", "mode"])
    op.create_index("ix_follow_intervals_user", "follow_intervals", ["user_id", "scope", "mode"])
    op.create_index(
        "uq_follow_intervals_active",
        "follow_intervals",
        ["org_id", "scope", "subject_id", "user_id", "mode"],
        unique=True,
        postgresql_where=sa.text("ended_at IS NULL"),
    )

    # -----------------------------------------------------------------------
    # 3. Event log and feed items
    # -----------------------------------------------------------------------

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("card_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("board_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("board_context_ids", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_events_org_id", "events", ["org_id"])
    op.create_index("ix_events_board_id", "events", ["board_id"])
    op.create_index("ix_events_card_id_id", "events", ["card_id", "id"])

    op.create_table(
        "feed_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("event_time", sa.DateTime(), nullable=False),
        sa.Column("card_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("board_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.UniqueConstraint("event_id", "user_id", name="uq_feed_items_event_user"),
    )
    op.create_index("ix_feed_items_user_org_id", "feed_items", ["user_id", "org_id", "id"])

    # -----------------------------------------------------------------------
    # 4. Event immutability trigger
    # -----------------------------------------------------------------------

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_event_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Events are immutable. UPDATE and DELETE are not permitted.';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER events_immutable
        BEFORE UPDATE OR DELETE ON events
        FOR EACH ROW EXECUTE FUNCTION prevent_event_mutation()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS events_immutable ON events")
    op.execute("DROP FUNCTION IF EXISTS prevent_event_mutation()")

    for table in (
        "feed_items",
        "events",
        "follow_intervals",
        "comments",
        "cards",
        "board_memberships",
        "boards",
    ):
        op.drop_table(table)
