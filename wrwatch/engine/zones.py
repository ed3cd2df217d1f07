"""
wrwatch.engine.zones — Cycle-scoped zone hierarchy index
=========================================================

The provider returns the geographic hierarchy (world → continent →
country → region) as a flat list with parent pointers.  Records store a
player's zone as the full root-first path, so every new record needs an
ancestor walk.

A :class:`ZoneIndex` is built from one cycle's zone list and thrown away
with it; both lookups are memoized on the instance.  Walks are iterative
with a visited set and a depth bound so a cyclic or dangling parent
pointer ends the walk instead of looping.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable

from wrwatch.clients.schemas import Zone

logger = logging.getLogger(__name__)

MAX_ZONE_DEPTH = 16
PATH_SEPARATOR = "|"


class ZoneLevel(enum.IntEnum):
    """Position of a zone inside a root-first path."""
    WORLD = 0
    CONTINENT = 1
    COUNTRY = 2
    REGION = 3


class ZoneIndex:
    """Ancestor and name-path lookups over one fetched zone table.

    Usage:
        zones = ZoneIndex(await nadeo.zones())
        path = zones.ancestors(entry.zone_id)          # (World, Europe, France, …)
        path = zones.by_name_path("World|Europe|France")
    """

    def __init__(self, zones: Iterable[Zone]) -> None:
        self._by_id: dict[str, Zone] = {}
        self._by_parent_and_name: dict[tuple[str | None, str], Zone] = {}
        for zone in zones:
            # First occurrence wins on duplicate ids/names
            self._by_id.setdefault(zone.zone_id, zone)
            self._by_parent_and_name.setdefault((zone.parent_id, zone.name), zone)

        self._ancestors: dict[str, tuple[Zone, ...]] = {}
        self._paths: dict[str, tuple[Zone, ...]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, zone_id: object) -> bool:
        return zone_id in self._by_id

    def get(self, zone_id: str) -> Zone | None:
        return self._by_id.get(zone_id)

    # -------------------------------------------------------------------
    # Ancestor lookup
    # -------------------------------------------------------------------
    def ancestors(self, zone_id: str) -> tuple[Zone, ...]:
        """Path from the root down to *zone_id* (inclusive).

        An unknown id gives ``()``.  A walk that hits an unknown parent,
        a cycle or :data:`MAX_ZONE_DEPTH` returns what it collected so far.
        """
        cached = self._ancestors.get(zone_id)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        path = self._walk_up(zone_id)
        self._ancestors[zone_id] = path
        return path

    def _walk_up(self, zone_id: str) -> tuple[Zone, ...]:
        chain: list[Zone] = []
        visited: set[str] = set()
        current: str | None = zone_id

        while current is not None:
            if current in visited:
                logger.warning("Zone cycle detected at %s while resolving %s", current, zone_id)
                break
            if len(chain) >= MAX_ZONE_DEPTH:
                logger.warning("Zone path for %s exceeds %d levels; truncated", zone_id, MAX_ZONE_DEPTH)
                break

            zone = self._by_id.get(current)
            if zone is None:
                if current != zone_id:
                    logger.warning("Zone %s references unknown parent %s", chain[-1].zone_id, current)
                break

            visited.add(current)
            chain.append(zone)
            current = zone.parent_id

        chain.reverse()
        return tuple(chain)

    # -------------------------------------------------------------------
    # Name-path lookup
    # -------------------------------------------------------------------
    def by_name_path(self, path: str) -> tuple[Zone, ...]:
        """Resolve ``"World|Europe|France"`` segment by segment.

        Each segment must be a child of the previous match.  The first
        segment that doesn't match stops the walk; the matched prefix is
        returned.
        """
        cached = self._paths.get(path)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        matched: list[Zone] = []
        parent_id: str | None = None
        for segment in path.split(PATH_SEPARATOR)[:MAX_ZONE_DEPTH]:
            zone = self._by_parent_and_name.get((parent_id, segment))
            if zone is None:
                logger.warning("Zone path %r: no match for segment %r", path, segment)
                break
            matched.append(zone)
            parent_id = zone.zone_id

        result = tuple(matched)
        self._paths[path] = result
        return result
