"""
wrwatch.clients.nadeo — Game-service token issuance & queries
==============================================================

Two clients share the core API host:

- :class:`NadeoAuthClient` turns a Ubisoft ticket into a **core** token
  pair, a core access token into a **live-services** token pair, and
  refreshes either pair.
- :class:`NadeoClient` runs the read-only queries the synchronizer needs
  (zones, maps, map records on the core host; leaderboards and clubs on
  the live host), authenticating with whatever tokens the session
  manager currently holds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from wrwatch.clients.http import (
    AuthenticationError,
    UpstreamDataError,
    json_body,
    raise_for_upstream,
)
from wrwatch.clients.schemas import (
    ClubActivityResponse,
    ClubCampaignResponse,
    LeaderboardResponse,
    MapInfo,
    MapRecord,
    TokenPair,
    Zone,
    parse,
    parse_list,
)

if TYPE_CHECKING:
    from wrwatch.services.session_service import SessionManager

logger = logging.getLogger(__name__)

CORE_BASE_URL = "https://prod.trackmania.core.nadeo.online"
LIVE_BASE_URL = "https://live-services.trackmania.nadeo.live/api/token"

AUDIENCE_LIVE = "NadeoLiveServices"

# Map ids are UUIDs; map uids are shorter opaque strings
_MAP_ID_LENGTH = 36


# ---------------------------------------------------------------------------
# Token issuance
# ---------------------------------------------------------------------------
class NadeoAuthClient:
    """Issues and refreshes game-service token pairs."""

    def __init__(self, http: httpx.AsyncClient, base_url: str = CORE_BASE_URL) -> None:
        self._http = http
        self._base_url = base_url

    async def _issue(self, path: str, authorization: str, body: dict | None = None) -> TokenPair:
        response = await self._http.post(
            f"{self._base_url}{path}",
            headers={"Content-Type": "application/json", "Authorization": authorization},
            json=body,
        )
        raise_for_upstream(response, auth=True)
        try:
            return parse(TokenPair, json_body(response))
        except UpstreamDataError as exc:
            raise AuthenticationError(f"Unusable token response from {path}: {exc}") from exc

    async def authenticate_ubisoft(self, ticket: str) -> TokenPair:
        """Exchange a Ubisoft ticket for a core token pair."""
        return await self._issue(
            "/v2/authentication/token/ubiservices", f"ubi_v1 t={ticket}",
        )

    async def authenticate_audience(self, core_access_token: str, audience: str = AUDIENCE_LIVE) -> TokenPair:
        """Exchange a core access token for a token pair scoped to *audience*."""
        return await self._issue(
            "/v2/authentication/token/nadeoservices",
            f"nadeo_v1 t={core_access_token}",
            {"audience": audience},
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Trade a refresh token for a fresh pair."""
        return await self._issue(
            "/v2/authentication/token/refresh", f"nadeo_v1 t={refresh_token}",
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
class NadeoClient:
    """Read-only game-service queries.

    Tokens are read from *session* on every call, so a refresh done by
    :meth:`SessionManager.ensure` is picked up without rebuilding the client.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        session: SessionManager,
        core_base_url: str = CORE_BASE_URL,
        live_base_url: str = LIVE_BASE_URL,
    ) -> None:
        self._http = http
        self._session = session
        self.core_base_url = core_base_url
        self.live_base_url = live_base_url

    async def _get(self, path: str, *, live: bool = False, params: dict | None = None) -> Any:
        credentials = self._session.credentials
        pair = credentials.live if live else credentials.core
        if pair is None:
            raise AuthenticationError(
                f"No {'live' if live else 'core'} token; call SessionManager.ensure() first"
            )

        base = self.live_base_url if live else self.core_base_url
        response = await self._http.get(
            f"{base}{path}",
            params=params,
            headers={"Authorization": f"nadeo_v1 t={pair.access_token}"},
        )
        raise_for_upstream(response)
        return json_body(response)

    # -- core -----------------------------------------------------------
    async def zones(self) -> list[Zone]:
        return parse_list(Zone, await self._get("/zones"))

    async def maps(self, ids: list[str]) -> list[MapInfo]:
        """Map info for map uids (or map ids, detected by length)."""
        if not ids:
            return []
        key = "mapIdList" if len(ids[0]) == _MAP_ID_LENGTH else "mapUidList"
        return parse_list(MapInfo, await self._get("/maps", params={key: ",".join(ids)}))

    async def map_records(self, account_ids: list[str], map_ids: list[str]) -> list[MapRecord]:
        payload = await self._get(
            "/mapRecords",
            params={"accountIdList": ",".join(account_ids), "mapIdList": ",".join(map_ids)},
        )
        return parse_list(MapRecord, payload)

    def replay_url(self, record_uid: str) -> str:
        """Anonymous download URL of a record's replay file."""
        return f"{self.core_base_url}/storageObjects/{record_uid}"

    # -- live services --------------------------------------------------
    async def leaderboard(
        self,
        group_uid: str,
        map_uid: str | None = None,
        offset: int = 0,
        length: int = 5,
    ) -> LeaderboardResponse:
        """World top of a map (``map_uid`` given) or of the whole campaign."""
        path = f"/leaderboard/group/{group_uid}"
        if map_uid:
            path += f"/map/{map_uid}"
        payload = await self._get(
            f"{path}/top",
            live=True,
            params={"offset": offset, "length": length, "onlyWorld": 1},
        )
        return parse(LeaderboardResponse, payload)

    async def club_activity(
        self, club_id: int, offset: int = 0, length: int = 10, active: bool = True,
    ) -> ClubActivityResponse:
        payload = await self._get(
            f"/club/{club_id}/activity",
            live=True,
            params={"offset": offset, "length": length, "active": 1 if active else 0},
        )
        return parse(ClubActivityResponse, payload)

    async def club_campaign(self, club_id: int, campaign_id: int) -> ClubCampaignResponse:
        payload = await self._get(f"/club/{club_id}/campaign/{campaign_id}", live=True)
        return parse(ClubCampaignResponse, payload)
