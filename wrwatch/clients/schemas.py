"""
wrwatch.clients.schemas — Upstream response models
===================================================

Pydantic models for every payload the tracker reads from the providers.
Each field is either **required** (a missing value raises
:class:`~wrwatch.clients.http.UpstreamDataError` and the enclosing unit is
skipped) or **tolerated** with an explicit default.  The tolerated fields:

============================  =========================================
Field                         Default when absent
============================  =========================================
``LeaderboardResponse.tops``  ``[]`` (no entries yet)
``LeaderboardEntry.sp``       ``0`` (absent on per-map leaderboards)
``MapInfo.thumbnailUrl``      ``""``
``MapRecord.timestamp``       ``None`` (capture time is stored instead)
``Zone.parentId``             ``None`` (root zone)
``ClubCampaign`` timestamps   ``0``
============================  =========================================

Everything else (account ids, scores, map uids, season uid, playlist)
is required.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wrwatch.clients.http import UpstreamDataError

M = TypeVar("M", bound=BaseModel)


class UpstreamModel(BaseModel):
    """Read-only DTO; unknown keys are ignored, camelCase aliases accepted."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


def parse(model: type[M], payload: Any) -> M:
    """Validate *payload* into *model*, raising :class:`UpstreamDataError`."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamDataError(f"Unexpected {model.__name__} payload: {exc}") from exc


def parse_list(model: type[M], payload: Any) -> list[M]:
    """Validate a JSON array of *model* items."""
    if not isinstance(payload, list):
        raise UpstreamDataError(f"Expected a list of {model.__name__}, got {type(payload).__name__}")
    return [parse(model, item) for item in payload]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
class UbisoftTicket(UpstreamModel):
    ticket: str
    expiration: datetime


class TokenPair(UpstreamModel):
    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")


class OAuthToken(UpstreamModel):
    access_token: str
    expires_in: int = 3600


class SessionCredentials(BaseModel):
    """The persisted credential set owned by the session manager."""

    model_config = ConfigDict(populate_by_name=True)

    ubisoft: UbisoftTicket | None = None
    core: TokenPair | None = None
    live: TokenPair | None = None


# ---------------------------------------------------------------------------
# Zones
# ---------------------------------------------------------------------------
class Zone(UpstreamModel):
    zone_id: str = Field(alias="zoneId")
    parent_id: str | None = Field(default=None, alias="parentId")
    name: str

    def as_dict(self) -> dict[str, Any]:
        """Stored representation (``records.user_zone`` items)."""
        return {"zoneId": self.zone_id, "parentId": self.parent_id, "name": self.name}


# ---------------------------------------------------------------------------
# Leaderboards, maps and records
# ---------------------------------------------------------------------------
class LeaderboardEntry(UpstreamModel):
    account_id: str = Field(alias="accountId")
    zone_id: str = Field(alias="zoneId")
    score: int
    position: int = 0
    sp: int = 0


class LeaderboardZone(UpstreamModel):
    zone_id: str = Field(default="", alias="zoneId")
    top: list[LeaderboardEntry] = Field(default_factory=list)


class LeaderboardResponse(UpstreamModel):
    tops: list[LeaderboardZone] = Field(default_factory=list)

    def world_top(self) -> list[LeaderboardEntry]:
        """Entries of the world leaderboard (first zone), or ``[]``."""
        return self.tops[0].top if self.tops else []


class MapInfo(UpstreamModel):
    map_id: str = Field(alias="mapId")
    map_uid: str = Field(alias="mapUid")
    name: str
    thumbnail_url: str = Field(default="", alias="thumbnailUrl")


class MapRecord(UpstreamModel):
    account_id: str = Field(alias="accountId")
    map_id: str = Field(alias="mapId")
    url: str
    timestamp: datetime | None = None

    @property
    def record_uid(self) -> str:
        """Provider record identity: the last path segment of ``url``."""
        return self.url.rstrip("/").rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Clubs & campaigns
# ---------------------------------------------------------------------------
class ClubActivity(UpstreamModel):
    activity_type: str = Field(alias="activityType")
    name: str
    campaign_id: int = Field(default=0, alias="campaignId")


class ClubActivityResponse(UpstreamModel):
    activity_list: list[ClubActivity] = Field(alias="activityList")


class PlaylistEntry(UpstreamModel):
    map_uid: str = Field(alias="mapUid")
    position: int = 0


class ClubCampaign(UpstreamModel):
    season_uid: str = Field(alias="seasonUid")
    name: str
    playlist: list[PlaylistEntry]
    start_timestamp: int = Field(default=0, alias="startTimestamp")
    end_timestamp: int = Field(default=0, alias="endTimestamp")


class ClubCampaignResponse(UpstreamModel):
    campaign_id: int = Field(default=0, alias="campaignId")
    campaign: ClubCampaign
