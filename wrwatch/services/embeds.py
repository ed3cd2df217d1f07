"""
wrwatch.services.embeds — Discord message builders
===================================================

All message construction lives here so the dispatcher and the
synchronizer only supply data.  Record notifications are a single
embed; the campaign ranking is a plain-content message with three
sections (current WRs, WR holders, campaign points).
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import discord
import pycountry

from wrwatch.engine.stats import CampaignStats
from wrwatch.engine.zones import ZoneLevel

RECORD_COLOR = 15772743
LEADERBOARD_URL = "https://trackmania.io/#/leaderboard/"

# In-game text styling: $RGB colour codes and single-letter modifiers
_FORMAT_CODES = re.compile(r"(\$[0-9a-fA-F]{3}|\$[WNOITSGZBEMwnoitsgzbem]{1})")
_MARKDOWN_SPECIAL = "[]()`*_~"
_REGIONAL_INDICATOR_A = 0x1F1E6


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------
def strip_format_codes(text: str) -> str:
    return _FORMAT_CODES.sub("", text)


def escape_markdown(text: str) -> str:
    for char in _MARKDOWN_SPECIAL:
        text = text.replace(char, f"\\{char}")
    return text


def format_score(score: int | None) -> str:
    """Milliseconds → ``m:ss.mmm`` (minutes omitted when zero)."""
    if score is None:
        return ""
    minutes, rest = divmod(score, 60_000)
    seconds, millis = divmod(rest, 1000)
    if minutes:
        return f"{minutes}:{seconds:02d}.{millis:03d}"
    return f"{seconds}.{millis:03d}"


def zone_flag(zone_path: Sequence[Mapping[str, Any]]) -> str:
    """Flag emoji for the country in a root-first zone path, or ``""``."""
    if len(zone_path) <= ZoneLevel.COUNTRY:
        return ""
    name = zone_path[ZoneLevel.COUNTRY].get("name", "")
    try:
        country = pycountry.countries.lookup(name)
    except LookupError:
        return ""
    return "".join(chr(_REGIONAL_INDICATOR_A + ord(c) - ord("A")) for c in country.alpha_2.upper())


def _flag_suffix(zone_path: Sequence[Mapping[str, Any]]) -> str:
    flag = zone_flag(zone_path)
    return f" {flag}" if flag else ""


# ---------------------------------------------------------------------------
# Record notification
# ---------------------------------------------------------------------------
def build_record_embed(
    *,
    track_uid: str,
    track_name: str,
    score: int,
    delta: int,
    user_name: str,
    user_zone: Sequence[Mapping[str, Any]],
) -> discord.Embed:
    """Embed announcing a new world record."""
    embed = discord.Embed(
        title=strip_format_codes(track_name),
        url=LEADERBOARD_URL + track_uid,
        color=RECORD_COLOR,
    )
    embed.add_field(name="WR", value=f"{format_score(score)} (-{format_score(delta)})", inline=True)
    embed.add_field(name="By", value=escape_markdown(user_name) + _flag_suffix(user_zone), inline=True)
    return embed


# ---------------------------------------------------------------------------
# Campaign ranking message
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CampaignRanking:
    """One row of the campaign-wide points leaderboard."""
    account_id: str
    name: str
    zone: list[dict[str, Any]]
    points: int


def _track_label(name: str) -> str:
    # "Club Campaign - 01" → "01"
    parts = strip_format_codes(name).split(" - ")
    return parts[1] if len(parts) > 1 else ""


def build_ranking_message(
    campaign_name: str,
    tracks: Sequence[Any],
    track_wrs: Mapping[str, Sequence[Any]],
    stats: CampaignStats,
    rankings: Sequence[CampaignRanking],
) -> dict[str, Any]:
    """Webhook body for the campaign ranking message.

    *tracks* are in playlist order; *track_wrs* maps a track uid to its
    current WR rows.
    """
    wr_lines = [
        f"{_track_label(track.name)} | {format_score(wr.score)} by "
        f"{escape_markdown(wr.user_name)}{_flag_suffix(wr.user_zone)}"
        for track in tracks
        for wr in track_wrs.get(track.uid, ())
    ]
    holder_lines = [
        f"{escape_markdown(standing.name)}{_flag_suffix(standing.zone)} ({standing.wrs})"
        for standing in stats.leaderboard
    ]
    ranking_lines = [
        f"{escape_markdown(ranking.name)}{_flag_suffix(ranking.zone)} ({ranking.points})"
        for ranking in rankings
    ]

    content = "\n\n".join([
        f"**{campaign_name} - World Records**\n" + "\n".join(wr_lines),
        f"**{campaign_name} - WR Rankings**\n" + "\n".join(holder_lines),
        f"**{campaign_name} - Campaign Rankings**\n" + "\n".join(ranking_lines),
    ])
    return {"content": content}
