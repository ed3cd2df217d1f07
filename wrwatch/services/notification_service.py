"""
wrwatch.services.notification_service — Durable notification queue
====================================================================

Producer side: :func:`new_record_jobs` builds ``notification_jobs`` rows
that the record writer inserts in the same transaction as the record.

Consumer side: :class:`NotificationDispatcher` drains due jobs oldest
first.  A job row is deleted once handled, so a crash between dequeue and
completion redelivers it (at-least-once; a duplicate webhook post is an
accepted cost).  A handler that raises leaves the row in place with
``attempts`` bumped and ``available_at`` pushed back; after
``max_attempts`` it is dead-lettered (``failed_at`` set) and never picked
up again.

Job kinds are a closed set (:class:`~wrwatch.database.models.JobKind`)
with one pydantic payload model each.  Unknown kinds are dead-lettered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, Field
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from wrwatch.clients.http import UpstreamError
from wrwatch.database.engine import get_session, run_db
from wrwatch.database.models import JobKind, NotificationJob
from wrwatch.services.embeds import build_record_embed
from wrwatch.services.replay_service import ReplayArchiver, replay_path
from wrwatch.services.webhook_service import WebhookError, WebhookSender

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
RETRY_BASE_SECONDS = 30
RETRY_MAX_SECONDS = 900


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------
class RecordPayload(BaseModel):
    uid: str
    campaign_uid: str
    track_uid: str
    user_id: str
    user_name: str = ""
    user_zone: list[dict[str, Any]] = Field(default_factory=list)
    date: datetime
    score: int
    delta: int = 0


class TrackPayload(BaseModel):
    campaign_uid: str
    uid: str
    map_id: str
    name: str
    thumbnail: str = ""


class NewRecordJob(BaseModel):
    record: RecordPayload
    track: TrackPayload
    webhook_url: str | None = None
    archive_replay: bool = True


def new_record_jobs(
    record: RecordPayload, track: TrackPayload, webhook_urls: list[str],
) -> list[NotificationJob]:
    """One ``new_record`` job per bound webhook (not yet added to a session).

    Without a webhook a single job is still queued so the replay gets
    archived; with several, only the first job archives.
    """
    targets: list[str | None] = list(webhook_urls) or [None]
    return [
        NotificationJob(
            kind=JobKind.NEW_RECORD.value,
            payload=NewRecordJob(
                record=record, track=track, webhook_url=url, archive_replay=index == 0,
            ).model_dump(mode="json"),
            attempts=0,
        )
        for index, url in enumerate(targets)
    ]


# ---------------------------------------------------------------------------
# Queue access (sync; call through run_db)
# ---------------------------------------------------------------------------
def fetch_due_jobs(engine: Engine, now: datetime, limit: int) -> list[NotificationJob]:
    """Live jobs with ``available_at <= now``, oldest first."""
    with Session(engine) as session:
        jobs = list(session.scalars(
            select(NotificationJob)
            .where(
                NotificationJob.failed_at.is_(None),
                NotificationJob.available_at <= now,
            )
            .order_by(NotificationJob.available_at, NotificationJob.id)
            .limit(limit)
        ))
        session.expunge_all()
        return jobs


def complete_job(engine: Engine, job_id: int) -> None:
    with get_session(engine) as session:
        session.execute(delete(NotificationJob).where(NotificationJob.id == job_id))


def retry_delay(attempts: int) -> timedelta:
    """Exponential backoff capped at :data:`RETRY_MAX_SECONDS`."""
    seconds = RETRY_BASE_SECONDS * 2 ** max(attempts - 1, 0)
    return timedelta(seconds=min(seconds, RETRY_MAX_SECONDS))


def fail_job(
    engine: Engine,
    job_id: int,
    error: str,
    now: datetime,
    max_attempts: int = MAX_ATTEMPTS,
) -> bool:
    """Record a failed attempt.  Returns True if the job was dead-lettered."""
    with get_session(engine) as session:
        job = session.get(NotificationJob, job_id)
        if job is None:
            return False
        job.attempts += 1
        job.last_error = error[:2000]
        if job.attempts >= max_attempts:
            job.failed_at = now
            return True
        job.available_at = now + retry_delay(job.attempts)
        return False


def dead_letter(engine: Engine, job_id: int, error: str, now: datetime) -> None:
    with get_session(engine) as session:
        job = session.get(NotificationJob, job_id)
        if job is not None:
            job.last_error = error[:2000]
            job.failed_at = now


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class DrainReport:
    delivered: int = 0
    retried: int = 0
    dead_lettered: int = 0


class NotificationDispatcher:
    """Independent consumer of ``notification_jobs``."""

    def __init__(
        self,
        engine: Engine,
        sender: WebhookSender,
        archiver: ReplayArchiver | None = None,
        replay_url: Callable[[str], str] | None = None,
        *,
        batch_size: int = 20,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._engine = engine
        self._sender = sender
        self._archiver = archiver
        self._replay_url = replay_url
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._clock = clock

    async def drain(self) -> DrainReport:
        """Handle every job due now (up to one batch)."""
        report = DrainReport()
        now = self._clock()
        jobs = await run_db(fetch_due_jobs, self._engine, now, self._batch_size)

        for job in jobs:
            try:
                kind = JobKind(job.kind)
            except ValueError:
                logger.error("Job %s has unknown kind %r; dead-lettered", job.id, job.kind)
                await run_db(dead_letter, self._engine, job.id, f"unknown job kind {job.kind!r}", now)
                report.dead_lettered += 1
                continue

            try:
                await self.handle(kind, job.payload)
            except Exception as exc:
                logger.exception("Job %s (%s) failed", job.id, kind, extra={"task": "dispatch"})
                dead = await run_db(
                    fail_job, self._engine, job.id, repr(exc), now, self._max_attempts,
                )
                if dead:
                    logger.error("Job %s dead-lettered after %d attempts", job.id, self._max_attempts)
                    report.dead_lettered += 1
                else:
                    report.retried += 1
                continue

            await run_db(complete_job, self._engine, job.id)
            report.delivered += 1

        if jobs:
            logger.info(
                "Dispatch: %d delivered, %d retried, %d dead-lettered",
                report.delivered, report.retried, report.dead_lettered,
            )
        return report

    async def handle(self, kind: JobKind, payload: dict[str, Any]) -> None:
        if kind is JobKind.NEW_RECORD:
            await self._handle_new_record(NewRecordJob.model_validate(payload))
        else:
            raise ValueError(f"No handler for job kind {kind!r}")

    async def _handle_new_record(self, job: NewRecordJob) -> None:
        record, track = job.record, job.track
        logger.info("New record: %s %s on %s", record.user_name, record.score, track.name)

        embed = build_record_embed(
            track_uid=track.uid,
            track_name=track.name,
            score=record.score,
            delta=record.delta,
            user_name=record.user_name,
            user_zone=record.user_zone,
        )
        if job.webhook_url:
            try:
                await self._sender.send_embed(job.webhook_url, embed)
            except (WebhookError, httpx.HTTPError) as exc:
                logger.warning("Record webhook for %s failed: %s", record.uid, exc)

        if not job.archive_replay or self._archiver is None or self._replay_url is None:
            return

        target = replay_path(
            self._archiver.root,
            campaign_uid=record.campaign_uid,
            track_uid=record.track_uid,
            track_name=track.name,
            score=record.score,
            user_name=record.user_name,
            record_uid=record.uid,
        )
        try:
            await self._archiver.archive(self._replay_url(record.uid), target)
        except FileExistsError:
            logger.info("Replay for %s already archived at %s", record.uid, target)
        except (UpstreamError, httpx.HTTPError, OSError) as exc:
            logger.warning("Replay archival for %s failed: %s", record.uid, exc)
