"""
wrwatch.clients.ubisoft — Platform identity (Ubisoft session ticket)
=====================================================================

The first link of the credential chain.  A ticket is issued from the
account's email + password and is later exchanged for game-service tokens.
"""

from __future__ import annotations

import base64
import logging

import httpx

from wrwatch.clients.http import (
    AuthenticationError,
    UpstreamDataError,
    json_body,
    raise_for_upstream,
)
from wrwatch.clients.schemas import UbisoftTicket, parse

logger = logging.getLogger(__name__)

UBISOFT_BASE_URL = "https://public-ubiservices.ubi.com"
UBISOFT_APP_ID = "86263886-327a-4328-ac69-527f0d20a237"


class UbisoftClient:
    """Issues Ubisoft session tickets."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        email: str,
        password: str,
        base_url: str = UBISOFT_BASE_URL,
    ) -> None:
        self._http = http
        self._base_url = base_url
        self._auth = base64.b64encode(f"{email}:{password}".encode()).decode()

    async def create_session(self) -> UbisoftTicket:
        """POST ``/v3/profiles/sessions`` and return the issued ticket.

        Raises :class:`~wrwatch.clients.http.AuthenticationError` on any
        rejection.
        """
        response = await self._http.post(
            f"{self._base_url}/v3/profiles/sessions",
            headers={
                "Content-Type": "application/json",
                "Ubi-AppId": UBISOFT_APP_ID,
                "Authorization": f"Basic {self._auth}",
            },
        )
        raise_for_upstream(response, auth=True)
        try:
            ticket = parse(UbisoftTicket, json_body(response))
        except UpstreamDataError as exc:
            raise AuthenticationError(f"Unusable Ubisoft session response: {exc}") from exc
        logger.info("Ubisoft ticket issued (expires %s)", ticket.expiration.isoformat())
        return ticket
