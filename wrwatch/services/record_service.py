"""
wrwatch.services.record_service — WR detection & atomic record write
=====================================================================

:class:`LeaderboardDiffer` compares a track's live world top with the
stored history:

1. Fetch the top-N world leaderboard entries for the map.
2. The lowest score is the WR; **every** entry with that score is a holder.
3. ``latest_best`` = lowest stored score for the track (None if empty).
4. For each holder, fetch the detailed map record (the leaderboard entry
   lacks the record id) and build the Record with
   ``delta = |score − latest_best|`` (0 without history).
5. Insert the Record plus one ``new_record`` job per bound webhook in a
   single transaction.  A duplicate record uid fails the primary key and
   rolls the whole unit back; that is the steady state, not an error.
6. Re-read the track history for the statistics pass.

Idempotency follows the same rule as every other writer here: the
database's primary key is the only deduplication boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wrwatch.clients.nadeo import NadeoClient
from wrwatch.database.engine import get_session, run_db
from wrwatch.database.models import Campaign, Record, Track
from wrwatch.engine.names import NameResolver
from wrwatch.engine.zones import ZoneIndex
from wrwatch.services.notification_service import (
    RecordPayload,
    TrackPayload,
    new_record_jobs,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrackSyncResult:
    """Outcome of diffing one track."""
    wrs: list[Record] = field(default_factory=list)
    history: list[Record] = field(default_factory=list)
    updates: int = 0


# ---------------------------------------------------------------------------
# Store access (sync; call through run_db)
# ---------------------------------------------------------------------------
def best_score(engine: Engine, campaign_uid: str, track_uid: str) -> int | None:
    """Lowest stored score on a track, or None without history."""
    with Session(engine) as session:
        return session.scalar(
            select(func.min(Record.score)).where(
                Record.campaign_uid == campaign_uid,
                Record.track_uid == track_uid,
            )
        )


def track_history(engine: Engine, campaign_uid: str, track_uid: str) -> list[Record]:
    """Every stored record of a track, oldest first."""
    with Session(engine) as session:
        records = list(session.scalars(
            select(Record)
            .where(Record.campaign_uid == campaign_uid, Record.track_uid == track_uid)
            .order_by(Record.date, Record.uid)
        ))
        session.expunge_all()
        return records


def insert_record(
    engine: Engine,
    record: RecordPayload,
    track: TrackPayload,
    webhook_urls: Sequence[str],
) -> bool:
    """Insert *record* and its notification jobs as one unit.

    Returns False (and writes nothing) if a record with the same uid exists.
    """
    with get_session(engine) as session:
        session.add(Record(**record.model_dump()))
        session.add_all(new_record_jobs(record, track, list(webhook_urls)))
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            logger.debug("Record %s already stored", record.uid)
            return False
    return True


# ---------------------------------------------------------------------------
# Differ
# ---------------------------------------------------------------------------
class LeaderboardDiffer:
    """Detects new world records on a track and persists them."""

    def __init__(
        self,
        engine: Engine,
        nadeo: NadeoClient,
        *,
        leaderboard_length: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._engine = engine
        self._nadeo = nadeo
        self._length = leaderboard_length
        self._clock = clock

    async def sync_track(
        self,
        campaign: Campaign,
        track: Track,
        *,
        zones: ZoneIndex,
        names: NameResolver,
        webhook_urls: Sequence[str] = (),
    ) -> TrackSyncResult:
        leaderboard = await self._nadeo.leaderboard(campaign.uid, track.uid, 0, self._length)
        entries = leaderboard.world_top()
        if not entries:
            logger.debug("Track %s has no leaderboard entries yet", track.uid)
            history = await run_db(track_history, self._engine, campaign.uid, track.uid)
            return TrackSyncResult(wrs=[], history=history, updates=0)

        wr_score = min(entry.score for entry in entries)
        holders = [entry for entry in entries if entry.score == wr_score]
        latest_best = await run_db(best_score, self._engine, campaign.uid, track.uid)

        track_payload = TrackPayload(
            campaign_uid=track.campaign_uid,
            uid=track.uid,
            map_id=track.map_id,
            name=track.name,
            thumbnail=track.thumbnail,
        )

        updates = 0
        for entry in holders:
            details = await self._nadeo.map_records([entry.account_id], [track.map_id])
            if not details:
                logger.error("No map record for %s on %s; holder skipped", entry.account_id, track.map_id)
                continue
            detail = details[0]

            record = RecordPayload(
                uid=detail.record_uid,
                campaign_uid=campaign.uid,
                track_uid=track.uid,
                user_id=entry.account_id,
                user_name=await names.get(entry.account_id),
                user_zone=[zone.as_dict() for zone in zones.ancestors(entry.zone_id)],
                date=detail.timestamp or self._clock(),
                score=entry.score,
                delta=abs(entry.score - latest_best) if latest_best is not None else 0,
            )
            if await run_db(insert_record, self._engine, record, track_payload, webhook_urls):
                updates += 1
                logger.info(
                    "New WR on %s: %s by %s (-%s)",
                    track.name, record.score, record.user_name or record.user_id, record.delta,
                )

        history = await run_db(track_history, self._engine, campaign.uid, track.uid)
        wrs = [row for row in history if row.score == wr_score]
        return TrackSyncResult(wrs=wrs, history=history, updates=updates)
