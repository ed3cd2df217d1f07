"""
wrwatch.clients.oauth — Public OAuth API (display names)
=========================================================

Display names are only available from the public OAuth API, which uses
its own client-credentials token.  The token is kept until its
``expires_in`` runs out; a 401 on a lookup triggers one re-login and
one retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import httpx

from wrwatch.clients.http import (
    AuthenticationError,
    UpstreamDataError,
    json_body,
    raise_for_upstream,
)
from wrwatch.clients.schemas import OAuthToken, parse

logger = logging.getLogger(__name__)

OAUTH_BASE_URL = "https://api.trackmania.com/api"

# Provider limit on account ids per display-name request
DISPLAY_NAMES_LIMIT = 50


class TrackmaniaOAuthClient:
    """Resolves account ids to display names."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        base_url: str = OAUTH_BASE_URL,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = base_url
        self._clock = clock
        self._token: str | None = None
        self._expires_at: datetime | None = None

    @property
    def has_valid_token(self) -> bool:
        return (
            self._token is not None
            and self._expires_at is not None
            and self._clock() < self._expires_at
        )

    async def login(self) -> None:
        """Obtain a client-credentials access token."""
        response = await self._http.post(
            f"{self._base_url}/access_token",
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )
        raise_for_upstream(response, auth=True)
        try:
            token = parse(OAuthToken, json_body(response))
        except UpstreamDataError as exc:
            raise AuthenticationError(f"Unusable OAuth token response: {exc}") from exc

        self._token = token.access_token
        self._expires_at = self._clock() + timedelta(seconds=max(token.expires_in - 60, 0))
        logger.debug("OAuth token acquired (expires in %ss)", token.expires_in)

    async def _fetch(self, ids: list[str]) -> httpx.Response:
        return await self._http.get(
            f"{self._base_url}/display-names",
            params=[("accountId[]", account_id) for account_id in ids],
            headers={"Authorization": f"Bearer {self._token}"},
        )

    async def _display_names_chunk(self, ids: list[str]) -> dict[str, str]:
        if not self.has_valid_token:
            await self.login()

        response = await self._fetch(ids)
        if response.status_code == 401:
            logger.info("OAuth token rejected; logging in again")
            await self.login()
            response = await self._fetch(ids)

        raise_for_upstream(response)
        payload = json_body(response)
        # An empty result comes back as [] instead of {}
        if isinstance(payload, list):
            return {}
        if not isinstance(payload, dict):
            raise UpstreamDataError(f"Unexpected display-names payload: {type(payload).__name__}")
        return {str(k): str(v) for k, v in payload.items()}

    async def display_names(self, ids: list[str]) -> dict[str, str]:
        """Map of account id → display name.  Unknown ids are simply absent."""
        names: dict[str, str] = {}
        for start in range(0, len(ids), DISPLAY_NAMES_LIMIT):
            names.update(await self._display_names_chunk(ids[start:start + DISPLAY_NAMES_LIMIT]))
        return names
