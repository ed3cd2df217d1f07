"""Initial schema: campaigns, tracks, records, jobs, subscriptions, settings

Revision ID: 4c2e9a7b1d30
Revises:
Create Date: 2026-10-19 09:12:41.508113

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4c2e9a7b1d30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create every wrwatch table."""

    # --- campaigns ---
    op.create_table(
        "campaigns",
        sa.Column("uid", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("event_starts_at", sa.BigInteger, nullable=True),
        sa.Column("event_ends_at", sa.BigInteger, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- tracks ---
    op.create_table(
        "tracks",
        sa.Column(
            "campaign_uid", sa.String(64),
            sa.ForeignKey("campaigns.uid", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("uid", sa.String(64), primary_key=True),
        sa.Column("map_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("thumbnail", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- records (append-only WR history) ---
    op.create_table(
        "records",
        sa.Column("uid", sa.String(64), primary_key=True),
        sa.Column("campaign_uid", sa.String(64), nullable=False),
        sa.Column("track_uid", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("user_name", sa.String(100), nullable=True),
        sa.Column("user_zone", postgresql.JSONB, nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["campaign_uid", "track_uid"],
            ["tracks.campaign_uid", "tracks.uid"],
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_records_track_score", "records", ["campaign_uid", "track_uid", "score"],
    )

    # --- notification_jobs (durable queue) ---
    op.create_table(
        "notification_jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "available_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notification_jobs_due", "notification_jobs", ["failed_at", "available_at"],
    )

    # --- webhook_subscriptions ---
    op.create_table(
        "webhook_subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("club_id", sa.BigInteger, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("webhook_url", sa.Text, nullable=False),
        sa.Column("ranking_webhook_url", sa.Text, nullable=False),
        sa.Column("ranking_message_id", sa.String(32), nullable=True),
        sa.Column("ranking_message_cache", sa.Text, nullable=False, server_default=""),
        sa.UniqueConstraint("club_id", "name", name="uq_webhook_subscriptions_club_name"),
    )

    # --- settings ---
    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text, nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    """Drop every wrwatch table."""
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_table("webhook_subscriptions")
    op.drop_index("ix_notification_jobs_due", table_name="notification_jobs")
    op.drop_table("notification_jobs")
    op.drop_index("ix_records_track_score", table_name="records")
    op.drop_table("records")
    op.drop_table("tracks")
    op.drop_table("campaigns")
