"""
wrwatch.clients.http — Shared HTTP plumbing & upstream error taxonomy
=====================================================================

Every upstream client shares one ``httpx.AsyncClient`` built by
:func:`build_http_client`.  Responses are checked with
:func:`raise_for_upstream` so callers only ever see the exceptions below:

- :class:`AuthenticationError` — credential issuance/refresh was rejected,
  or an authenticated call came back 401/403.  Fatal for the current tick.
- :class:`UpstreamDataError` — any other non-2xx status, a body that is not
  JSON, or a payload that fails DTO validation.  Callers skip the smallest
  enclosing unit (club, campaign or track) and carry on.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class UpstreamError(Exception):
    """Base class for failures talking to the game-service providers."""


class AuthenticationError(UpstreamError):
    """Credentials were rejected or could not be obtained."""


class UpstreamDataError(UpstreamError):
    """The provider answered with an error status or an unusable payload."""


def build_http_client(user_agent: str, timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Create the process-wide async HTTP client (one retry on connect errors)."""
    transport = httpx.AsyncHTTPTransport(retries=1)
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        headers={"User-Agent": user_agent},
    )


def raise_for_upstream(response: httpx.Response, *, auth: bool = False) -> None:
    """Map a non-2xx *response* onto the upstream error taxonomy.

    With ``auth=True`` (token issuance endpoints) every failure is an
    :class:`AuthenticationError`.
    """
    if response.is_success:
        return

    detail = (
        f"{response.request.method} {response.request.url.copy_with(query=None)} "
        f"→ {response.status_code}: {response.text[:200]}"
    )
    if auth or response.status_code in (401, 403):
        raise AuthenticationError(detail)
    raise UpstreamDataError(detail)


def json_body(response: httpx.Response) -> Any:
    """Decode a JSON body, raising :class:`UpstreamDataError` on garbage."""
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamDataError(
            f"Malformed JSON from {response.request.url.copy_with(query=None)}"
        ) from exc
