"""
tests/test_zones.py — Zone hierarchy index
===========================================

Ancestor walks, name-path lookups, memoization, and the guards against
cyclic or dangling parent pointers.
"""

from __future__ import annotations

from wrwatch.clients.schemas import Zone
from wrwatch.engine.zones import MAX_ZONE_DEPTH, ZoneIndex, ZoneLevel


class TestAncestors:
    """ZoneIndex.ancestors() path resolution."""

    def test_root_first_path(self, zone_list):
        zones = ZoneIndex(zone_list)
        path = zones.ancestors("idf")
        assert [z.zone_id for z in path] == ["world", "europe", "france", "idf"]
        assert path[ZoneLevel.COUNTRY].name == "France"

    def test_root_is_its_own_path(self, zone_list):
        zones = ZoneIndex(zone_list)
        assert [z.zone_id for z in zones.ancestors("world")] == ["world"]

    def test_unknown_zone_gives_empty_path(self, zone_list):
        assert ZoneIndex(zone_list).ancestors("atlantis") == ()

    def test_dangling_parent_returns_partial_path(self):
        zones = ZoneIndex([
            Zone(zoneId="city", parentId="missing-region", name="City"),
        ])
        assert [z.zone_id for z in zones.ancestors("city")] == ["city"]

    def test_cycle_terminates(self):
        zones = ZoneIndex([
            Zone(zoneId="a", parentId="b", name="A"),
            Zone(zoneId="b", parentId="a", name="B"),
        ])
        path = zones.ancestors("a")
        assert [z.zone_id for z in path] == ["b", "a"]

    def test_depth_is_bounded(self):
        chain = [Zone(zoneId="z0", parentId=None, name="Z0")]
        chain += [
            Zone(zoneId=f"z{i}", parentId=f"z{i - 1}", name=f"Z{i}")
            for i in range(1, MAX_ZONE_DEPTH + 10)
        ]
        zones = ZoneIndex(chain)
        assert len(zones.ancestors(f"z{MAX_ZONE_DEPTH + 9}")) == MAX_ZONE_DEPTH

    def test_lookups_are_memoized(self, zone_list):
        zones = ZoneIndex(zone_list)
        first = zones.ancestors("idf")
        second = zones.ancestors("idf")
        assert first is second
        assert zones.misses == 1
        assert zones.hits == 1


class TestNamePath:
    """ZoneIndex.by_name_path() segment matching."""

    def test_full_match(self, zone_list):
        zones = ZoneIndex(zone_list)
        path = zones.by_name_path("World|Europe|France")
        assert [z.zone_id for z in path] == ["world", "europe", "france"]

    def test_segment_must_be_child_of_previous(self, zone_list):
        zones = ZoneIndex(zone_list)
        # Germany exists, but not under France
        path = zones.by_name_path("World|Europe|France|Germany")
        assert [z.zone_id for z in path] == ["world", "europe", "france"]

    def test_first_miss_returns_matched_prefix(self, zone_list):
        zones = ZoneIndex(zone_list)
        path = zones.by_name_path("World|Asia|Japan")
        assert [z.zone_id for z in path] == ["world"]

    def test_root_mismatch_returns_empty(self, zone_list):
        assert ZoneIndex(zone_list).by_name_path("Mars") == ()


class TestContainer:
    def test_len_contains_get(self, zone_list):
        zones = ZoneIndex(zone_list)
        assert len(zones) == 5
        assert "france" in zones
        assert "mars" not in zones
        assert zones.get("germany").name == "Germany"
        assert zones.get("mars") is None

    def test_duplicate_ids_keep_first(self):
        zones = ZoneIndex([
            Zone(zoneId="x", parentId=None, name="First"),
            Zone(zoneId="x", parentId=None, name="Second"),
        ])
        assert zones.get("x").name == "First"
