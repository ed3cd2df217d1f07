"""
wrwatch.engine.names — Cycle-scoped display-name cache
=======================================================

Constructed fresh at the start of every sync cycle so renamed players
show their new name on the next pass.  Ids the provider doesn't know are
cached as ``""`` and not asked for again within the cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

logger = logging.getLogger(__name__)


class DisplayNameSource(Protocol):
    async def display_names(self, ids: list[str]) -> dict[str, str]: ...


class NameResolver:
    """Batching account-id → display-name resolver."""

    def __init__(self, source: DisplayNameSource) -> None:
        self._source = source
        self._cache: dict[str, str] = {}

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._cache

    def cached(self, account_id: str) -> str:
        """Cached name, or ``""`` when the id was never resolved."""
        return self._cache.get(account_id, "")

    async def get(self, account_id: str) -> str:
        name = self._cache.get(account_id)
        if name is not None:
            return name

        names = await self._source.display_names([account_id])
        name = names.get(account_id, "")
        self._cache[account_id] = name
        return name

    async def resolve_all(self, account_ids: Iterable[str]) -> dict[str, str]:
        """Resolve every uncached id in one batched call.

        Returns the names of all requested ids (cached or fresh).
        """
        requested = list(dict.fromkeys(account_ids))
        missing = [account_id for account_id in requested if account_id not in self._cache]

        if missing:
            names = await self._source.display_names(missing)
            for account_id in missing:
                self._cache[account_id] = names.get(account_id, "")
            logger.debug("Resolved %d display names (%d requested)", len(missing), len(requested))

        return {account_id: self._cache[account_id] for account_id in requested}
