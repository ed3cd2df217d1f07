"""
tests/test_dispatcher.py — Notification queue consumer
=======================================================

Tests the dispatcher's at-least-once delivery, retry backoff and
dead-lettering, unknown-kind handling, and the independence of webhook
posting from replay archival.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord
from sqlalchemy.orm import Session

from factories import FRENCH_PATH, make_campaign_detail, make_map_info
from wrwatch.clients.http import UpstreamDataError
from wrwatch.database.models import JobKind, NotificationJob
from wrwatch.services.campaign_service import upsert_campaign, upsert_track
from wrwatch.services.notification_service import (
    MAX_ATTEMPTS,
    RETRY_MAX_SECONDS,
    NotificationDispatcher,
    RecordPayload,
    TrackPayload,
    retry_delay,
)
from wrwatch.services.record_service import insert_record
from wrwatch.services.webhook_service import WebhookError

WEBHOOK = "https://discord.example/api/webhooks/1/record"


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _later(seconds: float = 1) -> datetime:
    return datetime.now(UTC) + timedelta(seconds=seconds)


def _enqueue(engine, uid: str = "rec-1", urls: tuple[str, ...] = (WEBHOOK,)) -> None:
    campaign = upsert_campaign(engine, make_campaign_detail())
    upsert_track(engine, campaign.uid, make_map_info("map-a", name="Club Cup - 01"))
    record = RecordPayload(
        uid=uid, campaign_uid="season-1", track_uid="map-a", user_id="alice",
        user_name="Alice", user_zone=FRENCH_PATH,
        date=datetime(2026, 10, 1, tzinfo=UTC), score=45123, delta=500,
    )
    track = TrackPayload(
        campaign_uid="season-1", uid="map-a", map_id="id-map-a", name="Club Cup - 01",
    )
    insert_record(engine, record, track, list(urls))


def _jobs(engine) -> list[NotificationJob]:
    with Session(engine) as session:
        return list(session.query(NotificationJob).order_by(NotificationJob.id))


def _sender(side_effect=None) -> MagicMock:
    sender = MagicMock()
    sender.send_embed = AsyncMock(side_effect=side_effect)
    return sender


def _archiver(root: Path, side_effect=None) -> MagicMock:
    archiver = MagicMock()
    archiver.root = root
    archiver.archive = AsyncMock(side_effect=side_effect)
    return archiver


def _replay_url(uid: str) -> str:
    return f"https://core.example/storageObjects/{uid}"


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
class TestDelivery:
    """Happy path and queue bookkeeping."""

    def test_delivers_and_deletes_job(self, db_engine):
        _enqueue(db_engine)
        sender = _sender()
        dispatcher = NotificationDispatcher(db_engine, sender, clock=_later)

        report = run_async(dispatcher.drain())

        assert report.delivered == 1
        assert _jobs(db_engine) == []
        url, embed = sender.send_embed.await_args.args
        assert url == WEBHOOK
        assert isinstance(embed, discord.Embed)
        assert embed.title == "Club Cup - 01"
        assert embed.fields[0].value == "45.123 (-0.500)"

    def test_one_post_per_bound_webhook(self, db_engine):
        _enqueue(db_engine, urls=("https://a", "https://b"))
        sender = _sender()

        run_async(NotificationDispatcher(db_engine, sender, clock=_later).drain())

        posted = sorted(call.args[0] for call in sender.send_embed.await_args_list)
        assert posted == ["https://a", "https://b"]

    def test_jobs_not_yet_due_are_left(self, db_engine):
        _enqueue(db_engine)
        past = lambda: datetime.now(UTC) - timedelta(hours=1)  # noqa: E731

        report = run_async(NotificationDispatcher(db_engine, _sender(), clock=past).drain())

        assert report.delivered == 0
        assert len(_jobs(db_engine)) == 1

    def test_undeleted_job_is_redelivered(self, db_engine):
        """A crash before completion means the row is simply drained again."""
        _enqueue(db_engine)
        sender = _sender()
        dispatcher = NotificationDispatcher(db_engine, sender, clock=_later)

        # Simulate the first consumer dying after the post but before the delete
        job = _jobs(db_engine)[0]
        run_async(dispatcher.handle(JobKind(job.kind), job.payload))
        run_async(dispatcher.drain())

        assert sender.send_embed.await_count == 2
        assert _jobs(db_engine) == []

    def test_batch_size_limits_one_drain(self, db_engine):
        _enqueue(db_engine, urls=("https://a", "https://b", "https://c"))
        dispatcher = NotificationDispatcher(db_engine, _sender(), batch_size=2, clock=_later)

        assert run_async(dispatcher.drain()).delivered == 2
        assert run_async(dispatcher.drain()).delivered == 1


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------
class TestFailures:
    """Retry, dead-letter and the closed set of job kinds."""

    def test_webhook_error_is_logged_not_retried(self, db_engine):
        _enqueue(db_engine)
        sender = _sender(side_effect=WebhookError(404, "Unknown Webhook"))

        report = run_async(NotificationDispatcher(db_engine, sender, clock=_later).drain())

        assert report.delivered == 1
        assert _jobs(db_engine) == []

    def test_handler_crash_bumps_attempts_and_delays(self, db_engine):
        _enqueue(db_engine)
        now = _later()
        sender = _sender(side_effect=RuntimeError("boom"))

        report = run_async(NotificationDispatcher(db_engine, sender, clock=lambda: now).drain())

        assert report.retried == 1
        (job,) = _jobs(db_engine)
        assert job.attempts == 1
        assert "boom" in job.last_error
        assert job.failed_at is None
        assert job.available_at.replace(tzinfo=UTC) > now

        # Not due again until the backoff elapses
        again = run_async(NotificationDispatcher(db_engine, sender, clock=lambda: now).drain())
        assert again.retried == 0

    def test_dead_letter_after_max_attempts(self, db_engine):
        _enqueue(db_engine)
        sender = _sender(side_effect=RuntimeError("boom"))
        start = _later()

        for attempt in range(MAX_ATTEMPTS):
            at = start + timedelta(hours=attempt)
            report = run_async(NotificationDispatcher(db_engine, sender, clock=lambda at=at: at).drain())

        assert report.dead_lettered == 1
        (job,) = _jobs(db_engine)
        assert job.attempts == MAX_ATTEMPTS
        assert job.failed_at is not None

        later = start + timedelta(days=1)
        final = run_async(NotificationDispatcher(db_engine, sender, clock=lambda: later).drain())
        assert final.delivered == final.retried == final.dead_lettered == 0

    def test_unknown_kind_is_dead_lettered(self, db_engine):
        with Session(db_engine) as session:
            session.add(NotificationJob(kind="mystery", payload={}, attempts=0))
            session.commit()
        sender = _sender()

        report = run_async(NotificationDispatcher(db_engine, sender, clock=_later).drain())

        assert report.dead_lettered == 1
        sender.send_embed.assert_not_awaited()
        (job,) = _jobs(db_engine)
        assert job.failed_at is not None
        assert "mystery" in job.last_error

    def test_retry_delay_is_bounded(self):
        assert retry_delay(1) == timedelta(seconds=30)
        assert retry_delay(2) == timedelta(seconds=60)
        assert retry_delay(20) == timedelta(seconds=RETRY_MAX_SECONDS)


# ---------------------------------------------------------------------------
# Replay archival
# ---------------------------------------------------------------------------
class TestArchival:
    """Webhook post and replay download fail independently."""

    def test_archives_to_record_path(self, db_engine, tmp_path):
        _enqueue(db_engine)
        archiver = _archiver(tmp_path)
        dispatcher = NotificationDispatcher(db_engine, _sender(), archiver, _replay_url, clock=_later)

        run_async(dispatcher.drain())

        url, target = archiver.archive.await_args.args
        assert url == "https://core.example/storageObjects/rec-1"
        assert target == tmp_path / "season-1" / "map-a" / "Club_Cup_-_01_45123_Alice_rec-1.Replay.Gbx"

    def test_webhook_failure_still_archives(self, db_engine, tmp_path):
        _enqueue(db_engine)
        archiver = _archiver(tmp_path)
        sender = _sender(side_effect=WebhookError(500, "oops"))

        report = run_async(
            NotificationDispatcher(db_engine, sender, archiver, _replay_url, clock=_later).drain()
        )

        archiver.archive.assert_awaited_once()
        assert report.delivered == 1

    def test_archive_failure_still_posts(self, db_engine, tmp_path):
        _enqueue(db_engine)
        archiver = _archiver(tmp_path, side_effect=UpstreamDataError("404"))
        sender = _sender()

        report = run_async(
            NotificationDispatcher(db_engine, sender, archiver, _replay_url, clock=_later).drain()
        )

        sender.send_embed.assert_awaited_once()
        assert report.delivered == 1
        assert _jobs(db_engine) == []

    def test_existing_replay_is_not_an_error(self, db_engine, tmp_path):
        _enqueue(db_engine)
        archiver = _archiver(tmp_path, side_effect=FileExistsError("exists"))

        report = run_async(
            NotificationDispatcher(db_engine, _sender(), archiver, _replay_url, clock=_later).drain()
        )

        assert report.delivered == 1

    def test_archival_disabled(self, db_engine):
        _enqueue(db_engine)
        dispatcher = NotificationDispatcher(db_engine, _sender(), None, _replay_url, clock=_later)
        assert run_async(dispatcher.drain()).delivered == 1

    def test_record_without_webhook_is_archived(self, db_engine, tmp_path):
        _enqueue(db_engine, urls=())
        archiver = _archiver(tmp_path)
        sender = _sender()

        report = run_async(
            NotificationDispatcher(db_engine, sender, archiver, _replay_url, clock=_later).drain()
        )

        assert report.delivered == 1
        sender.send_embed.assert_not_awaited()
        archiver.archive.assert_awaited_once()
        assert _jobs(db_engine) == []

    def test_several_webhooks_archive_once(self, db_engine, tmp_path):
        _enqueue(db_engine, urls=("https://a", "https://b", "https://c"))
        archiver = _archiver(tmp_path)
        sender = _sender()

        report = run_async(
            NotificationDispatcher(db_engine, sender, archiver, _replay_url, clock=_later).drain()
        )

        assert report.delivered == 3
        assert sender.send_embed.await_count == 3
        archiver.archive.assert_awaited_once()
