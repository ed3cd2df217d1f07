"""
wrwatch.engine.stats — Campaign WR statistics
==============================================

Pure functions over one sync pass's ``{track_uid: [WR records]}``.
Nothing here touches the database or the network; the synchronizer
recomputes the projections every cycle.

- :func:`holder_leaderboard` — players ranked by WR records held,
  ties broken by the most recent record.
- :func:`zone_leaderboard` — countries ranked by WR records held,
  falling back to the world zone for players with no country.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from wrwatch.engine.zones import ZoneLevel

if TYPE_CHECKING:
    from wrwatch.engine.zones import ZoneIndex


class WorldRecord(Protocol):
    """The record fields statistics read (satisfied by ``models.Record``)."""
    user_id: str
    user_name: str
    user_zone: list[dict[str, Any]]
    date: datetime


@dataclass(frozen=True, slots=True)
class HolderStanding:
    account_id: str
    name: str
    zone: list[dict[str, Any]]
    wrs: int
    latest: datetime


@dataclass(frozen=True, slots=True)
class ZoneStanding:
    zone: list[dict[str, Any]]
    wrs: int


@dataclass(frozen=True, slots=True)
class CampaignStats:
    leaderboard: list[HolderStanding] = field(default_factory=list)
    zone_leaderboard: list[ZoneStanding] = field(default_factory=list)


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _flatten(track_wrs: Mapping[str, Sequence[WorldRecord]]) -> list[WorldRecord]:
    return [record for records in track_wrs.values() for record in records]


def home_zone(path: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
    """Country zone of a root-first path, else the world zone, else None."""
    if len(path) > ZoneLevel.COUNTRY:
        return path[ZoneLevel.COUNTRY]
    if path:
        return path[ZoneLevel.WORLD]
    return None


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------
def holder_leaderboard(track_wrs: Mapping[str, Sequence[WorldRecord]]) -> list[HolderStanding]:
    """Rank WR holders by count desc, then by latest record date desc.

    Name and zone are taken from the holder's most recent record.
    """
    counts: dict[str, int] = {}
    latest: dict[str, WorldRecord] = {}
    for record in _flatten(track_wrs):
        counts[record.user_id] = counts.get(record.user_id, 0) + 1
        newest = latest.get(record.user_id)
        if newest is None or _utc(record.date) > _utc(newest.date):
            latest[record.user_id] = record

    standings = [
        HolderStanding(
            account_id=account_id,
            name=latest[account_id].user_name,
            zone=list(latest[account_id].user_zone),
            wrs=wrs,
            latest=_utc(latest[account_id].date),
        )
        for account_id, wrs in counts.items()
    ]
    standings.sort(key=lambda s: (s.wrs, s.latest), reverse=True)
    return standings


def zone_leaderboard(
    track_wrs: Mapping[str, Sequence[WorldRecord]],
    zones: ZoneIndex | None = None,
) -> list[ZoneStanding]:
    """Rank home zones by WR records held (stable for ties).

    The displayed path is the first three levels, taken from *zones* when
    it knows the zone and from the record's stored path otherwise.
    """
    counts: dict[str, int] = {}
    paths: dict[str, list[dict[str, Any]]] = {}
    for record in _flatten(track_wrs):
        zone = home_zone(record.user_zone)
        if zone is None:
            continue
        zone_id = zone["zoneId"]
        counts[zone_id] = counts.get(zone_id, 0) + 1
        if zone_id not in paths:
            indexed = zones.ancestors(zone_id) if zones is not None else ()
            if indexed:
                paths[zone_id] = [z.as_dict() for z in indexed[:3]]
            else:
                depth = record.user_zone.index(zone) + 1
                paths[zone_id] = list(record.user_zone[:min(depth, 3)])

    standings = [ZoneStanding(zone=paths[zone_id], wrs=wrs) for zone_id, wrs in counts.items()]
    standings.sort(key=lambda s: s.wrs, reverse=True)
    return standings


def generate_stats(
    zones: ZoneIndex | None,
    track_wrs: Mapping[str, Sequence[WorldRecord]],
) -> CampaignStats:
    """Both projections for one campaign pass."""
    return CampaignStats(
        leaderboard=holder_leaderboard(track_wrs),
        zone_leaderboard=zone_leaderboard(track_wrs, zones),
    )
