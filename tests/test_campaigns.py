"""
tests/test_campaigns.py — Campaign selection & reference-data upserts
======================================================================
"""

from __future__ import annotations

import re

import pytest
from sqlalchemy.orm import Session

from factories import make_activity_feed, make_campaign_detail, make_map_info
from wrwatch.clients.schemas import ClubActivity
from wrwatch.database.models import Campaign, Track
from wrwatch.services.campaign_service import (
    create_campaign,
    get_tracks,
    select_campaign,
    thumbnail_id,
    upsert_campaign,
    upsert_track,
)


class TestSelectCampaign:
    """Selector forms over the club activity feed."""

    FEED = make_activity_feed(("Winter 2026", 3), ("Autumn 2026", 2), ("Summer 2026", 1)).activity_list

    def test_latest_is_first_campaign_in_feed(self):
        news = ClubActivity(activityType="news", name="Announcement", campaignId=0)
        activity = select_campaign([news, *self.FEED], "latest")
        assert activity.campaign_id == 3

    def test_exact_name(self):
        assert select_campaign(self.FEED, "Autumn 2026").campaign_id == 2

    def test_exact_name_is_not_a_substring_match(self):
        assert select_campaign(self.FEED, "Autumn") is None

    def test_slash_pattern(self):
        assert select_campaign(self.FEED, "/^Su/").campaign_id == 1

    def test_regex_prefix(self):
        assert select_campaign(self.FEED, "regex:20\\d\\d").campaign_id == 3

    def test_non_campaign_activities_never_match(self):
        feed = make_activity_feed(("Autumn 2026", 9), activity_type="room").activity_list
        assert select_campaign(feed, "Autumn 2026") is None
        assert select_campaign(feed, "latest") is None

    def test_bad_pattern_raises(self):
        with pytest.raises(re.error):
            select_campaign(self.FEED, "/(/")


class TestThumbnailId:
    def test_strips_path_and_extension(self):
        assert thumbnail_id("https://core.example/maps/abc-123.jpg") == "abc-123"

    def test_no_extension(self):
        assert thumbnail_id("https://core.example/maps/abc") == "abc"


class TestCampaignUpsert:
    """Read → create-if-absent → re-read."""

    def test_creates_then_returns_existing(self, db_engine):
        detail = make_campaign_detail()

        first = upsert_campaign(db_engine, detail)
        second = upsert_campaign(db_engine, detail)

        assert first.uid == second.uid == "season-1"
        assert first.event_starts_at == 1_700_000_000
        with Session(db_engine) as session:
            assert session.query(Campaign).count() == 1

    def test_stored_campaign_is_not_updated(self, db_engine):
        upsert_campaign(db_engine, make_campaign_detail(name="Original"))
        campaign = upsert_campaign(db_engine, make_campaign_detail(name="Renamed"))
        assert campaign.name == "Original"

    def test_duplicate_create_loses_quietly(self, db_engine):
        detail = make_campaign_detail()
        assert create_campaign(db_engine, detail) is True
        assert create_campaign(db_engine, detail) is False


class TestTrackUpsert:
    def test_creates_track_with_thumbnail_id(self, db_engine):
        upsert_campaign(db_engine, make_campaign_detail())

        track = upsert_track(db_engine, "season-1", make_map_info("map-a"))

        assert track.uid == "map-a"
        assert track.map_id == "id-map-a"
        assert track.thumbnail == "thumb-map-a"

    def test_idempotent(self, db_engine):
        upsert_campaign(db_engine, make_campaign_detail())
        upsert_track(db_engine, "season-1", make_map_info("map-a"))
        upsert_track(db_engine, "season-1", make_map_info("map-a", name="Other name"))

        with Session(db_engine) as session:
            assert session.query(Track).count() == 1
        assert get_tracks(db_engine, "season-1")[0].name == "Club Cup - map-a"

    def test_same_map_in_two_campaigns(self, db_engine):
        upsert_campaign(db_engine, make_campaign_detail("season-1"))
        upsert_campaign(db_engine, make_campaign_detail("season-2"))
        upsert_track(db_engine, "season-1", make_map_info("map-a"))
        upsert_track(db_engine, "season-2", make_map_info("map-a"))

        assert len(get_tracks(db_engine, "season-1")) == 1
        assert len(get_tracks(db_engine, "season-2")) == 1
