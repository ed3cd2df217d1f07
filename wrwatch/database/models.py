"""
wrwatch.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- campaigns              — Club campaigns, keyed by season uid (immutable)
- tracks                 — Maps in a campaign playlist (immutable)
- records                — Append-only WR history, one row per provider record
- notification_jobs      — Durable queue of pending notifications
- webhook_subscriptions  — Watched (club, campaign) pairs and their webhooks
- settings               — Key-value store (persisted session credentials)
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all wrwatch ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class JobKind(enum.StrEnum):
    """Discriminant for rows in ``notification_jobs``."""
    NEW_RECORD = "new_record"


# ---------------------------------------------------------------------------
# Campaign — one per season uid
# ---------------------------------------------------------------------------
class Campaign(Base):
    __tablename__ = "campaigns"

    uid: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    event_starts_at: Mapped[int] = mapped_column(BigInteger, default=0)
    event_ends_at: Mapped[int] = mapped_column(BigInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Campaign uid={self.uid} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Track — one per map in a campaign playlist
# ---------------------------------------------------------------------------
class Track(Base):
    __tablename__ = "tracks"

    campaign_uid: Mapped[str] = mapped_column(
        String(64), ForeignKey("campaigns.uid", ondelete="CASCADE"), primary_key=True
    )
    uid: Mapped[str] = mapped_column(String(64), primary_key=True)
    map_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    thumbnail: Mapped[str] = mapped_column(String(200), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Track uid={self.uid} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Record — append-only WR history
# ---------------------------------------------------------------------------
class Record(Base):
    """A world record observed on a track.

    ``uid`` is the provider's record identity and the deduplication key:
    a second insert with the same uid fails on the primary key.
    """
    __tablename__ = "records"

    uid: Mapped[str] = mapped_column(String(64), primary_key=True)
    campaign_uid: Mapped[str] = mapped_column(String(64), nullable=False)
    track_uid: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_name: Mapped[str] = mapped_column(String(100), default="")
    # Zone path root-first: [{"zoneId", "parentId", "name"}, ...]
    user_zone: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["campaign_uid", "track_uid"],
            ["tracks.campaign_uid", "tracks.uid"],
            ondelete="CASCADE",
        ),
        Index("ix_records_track_score", "campaign_uid", "track_uid", "score"),
    )

    def __repr__(self) -> str:
        return f"<Record uid={self.uid} track={self.track_uid} score={self.score}>"


# ---------------------------------------------------------------------------
# NotificationJob — durable at-least-once queue
# ---------------------------------------------------------------------------
class NotificationJob(Base):
    """A pending notification.

    Rows are deleted once handled.  A row that is still present after a
    crash is delivered again on the next drain.
    """
    __tablename__ = "notification_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notification_jobs_due", "failed_at", "available_at"),
    )

    def __repr__(self) -> str:
        return f"<NotificationJob id={self.id} kind={self.kind} attempts={self.attempts}>"


# ---------------------------------------------------------------------------
# WebhookSubscription — watched campaigns (multi-club mode)
# ---------------------------------------------------------------------------
class WebhookSubscription(Base):
    """A (club, campaign selector) pair with its two Discord webhooks.

    Rows are managed by the operator command surface.  The tracker only
    reads them and keeps ``ranking_message_id`` / ``ranking_message_cache``
    up to date.
    """
    __tablename__ = "webhook_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    club_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Exact campaign name, "latest", "/pattern/" or "regex:pattern"
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    ranking_webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    ranking_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ranking_message_cache: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        UniqueConstraint("club_id", "name", name="uq_webhook_subscriptions_club_name"),
    )

    def __repr__(self) -> str:
        return f"<WebhookSubscription club={self.club_id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Setting — key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value store.  Values are JSON strings."""
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
