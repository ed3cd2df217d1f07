"""
tests/test_embeds.py — Message builders
========================================
"""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace

import discord

from factories import FRENCH_PATH, GERMAN_PATH, WORLD
from wrwatch.engine.stats import CampaignStats, HolderStanding
from wrwatch.services.embeds import (
    LEADERBOARD_URL,
    RECORD_COLOR,
    CampaignRanking,
    build_ranking_message,
    build_record_embed,
    escape_markdown,
    format_score,
    strip_format_codes,
    zone_flag,
)


class TestFormatting:
    """Score, text and flag helpers."""

    def test_format_score_with_minutes(self):
        assert format_score(65_432) == "1:05.432"

    def test_format_score_without_minutes(self):
        assert format_score(45_007) == "45.007"

    def test_format_score_zero_and_none(self):
        assert format_score(0) == "0.000"
        assert format_score(None) == ""

    def test_strip_format_codes(self):
        assert strip_format_codes("$o$F00Red $iTrack") == "Red Track"

    def test_escape_markdown(self):
        assert escape_markdown("a_b*c") == "a\\_b\\*c"

    def test_zone_flag(self):
        assert zone_flag(FRENCH_PATH) == "\U0001F1EB\U0001F1F7"
        assert zone_flag(GERMAN_PATH) == "\U0001F1E9\U0001F1EA"

    def test_zone_flag_without_country(self):
        assert zone_flag([WORLD]) == ""
        unknown = [*GERMAN_PATH[:2], {"zoneId": "x", "parentId": "europe", "name": "Atlantis"}]
        assert zone_flag(unknown) == ""


class TestRecordEmbed:
    def test_fields(self):
        embed = build_record_embed(
            track_uid="map-a",
            track_name="$oClub Cup - 01",
            score=44_500,
            delta=500,
            user_name="Speedy_Boi",
            user_zone=FRENCH_PATH,
        )

        assert isinstance(embed, discord.Embed)
        assert embed.title == "Club Cup - 01"
        assert embed.url == LEADERBOARD_URL + "map-a"
        assert embed.color.value == RECORD_COLOR
        wr, by = embed.fields
        assert (wr.name, wr.value) == ("WR", "44.500 (-0.500)")
        assert by.name == "By"
        assert by.value.startswith("Speedy\\_Boi ")
        assert by.value.endswith("\U0001F1EB\U0001F1F7")


class TestRankingMessage:
    """Three-section campaign ranking body."""

    def _body(self) -> str:
        tracks = [
            SimpleNamespace(uid="map-a", name="Club Cup - 01"),
            SimpleNamespace(uid="map-b", name="Club Cup - 02"),
        ]
        track_wrs = {
            "map-a": [SimpleNamespace(score=44_500, user_name="Alice", user_zone=FRENCH_PATH)],
            "map-b": [SimpleNamespace(score=61_000, user_name="Bob", user_zone=GERMAN_PATH)],
        }
        stats = CampaignStats(leaderboard=[
            HolderStanding("alice", "Alice", FRENCH_PATH, 1, datetime(2026, 10, 2, tzinfo=UTC)),
            HolderStanding("bob", "Bob", GERMAN_PATH, 1, datetime(2026, 10, 1, tzinfo=UTC)),
        ])
        rankings = [CampaignRanking("alice", "Alice", FRENCH_PATH, 3000)]
        return build_ranking_message("Club Cup", tracks, track_wrs, stats, rankings)["content"]

    def test_sections_in_order(self):
        content = self._body()
        headers = [line for line in content.splitlines() if line.startswith("**")]
        assert headers == [
            "**Club Cup - World Records**",
            "**Club Cup - WR Rankings**",
            "**Club Cup - Campaign Rankings**",
        ]

    def test_world_record_lines_in_playlist_order(self):
        lines = self._body().splitlines()
        assert lines[1].startswith("01 | 44.500 by Alice")
        assert lines[2].startswith("02 | 1:01.000 by Bob")

    def test_holder_and_points_lines(self):
        content = self._body()
        assert "Alice \U0001F1EB\U0001F1F7 (1)" in content
        assert "Alice \U0001F1EB\U0001F1F7 (3000)" in content

    def test_body_is_deterministic(self):
        assert self._body() == self._body()
