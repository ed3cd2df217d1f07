"""
wrwatch.services.campaign_service — Campaign & track reference data
====================================================================

Campaigns and tracks are immutable once stored.  Both are upserted with
the same read → create-if-absent → re-read sequence: the create is a
plain INSERT that loses to an existing primary key, and the re-read
returns whatever row won, whether it was ours or a concurrent writer's.

Also home to the campaign **selector** used by subscriptions:

- ``latest``            — first campaign in the club activity feed
- ``/pattern/``         — first campaign whose name matches the regex
- ``regex:pattern``     — same, command-surface spelling
- anything else         — exact campaign name
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wrwatch.clients.schemas import ClubActivity, ClubCampaign, MapInfo
from wrwatch.database.engine import get_session
from wrwatch.database.models import Campaign, Track

logger = logging.getLogger(__name__)

LATEST_SELECTOR = "latest"
REGEX_PREFIX = "regex:"
CAMPAIGN_ACTIVITY = "campaign"


# ---------------------------------------------------------------------------
# Campaign selection
# ---------------------------------------------------------------------------
def campaign_matcher(selector: str) -> Callable[[ClubActivity], bool]:
    """Build a predicate over club activities for a subscription *selector*.

    Raises
    ------
    re.error
        If the selector is a pattern that doesn't compile.
    """
    if selector == LATEST_SELECTOR:
        return lambda activity: activity.activity_type == CAMPAIGN_ACTIVITY

    pattern: re.Pattern[str] | None = None
    if selector.startswith(REGEX_PREFIX):
        pattern = re.compile(selector[len(REGEX_PREFIX):])
    elif len(selector) >= 2 and selector.startswith("/") and selector.endswith("/"):
        pattern = re.compile(selector[1:-1])

    if pattern is not None:
        return lambda activity: (
            activity.activity_type == CAMPAIGN_ACTIVITY and pattern.search(activity.name) is not None
        )
    return lambda activity: activity.activity_type == CAMPAIGN_ACTIVITY and activity.name == selector


def select_campaign(activities: Sequence[ClubActivity], selector: str) -> ClubActivity | None:
    """First activity in feed order matching *selector*."""
    matches = campaign_matcher(selector)
    return next((activity for activity in activities if matches(activity)), None)


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------
def get_campaign(engine: Engine, uid: str) -> Campaign | None:
    with Session(engine) as session:
        campaign = session.get(Campaign, uid)
        if campaign is not None:
            session.expunge(campaign)
        return campaign


def create_campaign(engine: Engine, detail: ClubCampaign) -> bool:
    """INSERT a campaign row.  False if one with the same uid exists."""
    with get_session(engine) as session:
        session.add(Campaign(
            uid=detail.season_uid,
            name=detail.name,
            event_starts_at=detail.start_timestamp,
            event_ends_at=detail.end_timestamp,
        ))
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            return False
    logger.info("Campaign created: %s (%s)", detail.name, detail.season_uid)
    return True


def upsert_campaign(engine: Engine, detail: ClubCampaign) -> Campaign | None:
    """Stored campaign for *detail*, creating it first if absent."""
    campaign = get_campaign(engine, detail.season_uid)
    if campaign is not None:
        return campaign

    if not create_campaign(engine, detail):
        logger.debug("Campaign %s created concurrently", detail.season_uid)
    return get_campaign(engine, detail.season_uid)


# ---------------------------------------------------------------------------
# Tracks
# ---------------------------------------------------------------------------
def thumbnail_id(url: str) -> str:
    """Basename of a thumbnail URL without its extension."""
    basename = url.rsplit("/", 1)[-1]
    stem, dot, _ = basename.rpartition(".")
    return stem if dot else basename


def get_track(engine: Engine, campaign_uid: str, uid: str) -> Track | None:
    with Session(engine) as session:
        track = session.get(Track, (campaign_uid, uid))
        if track is not None:
            session.expunge(track)
        return track


def get_tracks(engine: Engine, campaign_uid: str) -> list[Track]:
    with Session(engine) as session:
        tracks = list(session.scalars(
            select(Track).where(Track.campaign_uid == campaign_uid).order_by(Track.uid)
        ))
        session.expunge_all()
        return tracks


def create_track(engine: Engine, campaign_uid: str, info: MapInfo) -> bool:
    """INSERT a track row.  False if the (campaign, map) pair exists."""
    with get_session(engine) as session:
        session.add(Track(
            campaign_uid=campaign_uid,
            uid=info.map_uid,
            map_id=info.map_id,
            name=info.name,
            thumbnail=thumbnail_id(info.thumbnail_url),
        ))
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            return False
    logger.info("Track created: %s (%s)", info.name, info.map_uid)
    return True


def upsert_track(engine: Engine, campaign_uid: str, info: MapInfo) -> Track | None:
    track = get_track(engine, campaign_uid, info.map_uid)
    if track is not None:
        return track

    create_track(engine, campaign_uid, info)
    return get_track(engine, campaign_uid, info.map_uid)
