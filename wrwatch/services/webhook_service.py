"""
wrwatch.services.webhook_service — Discord webhook delivery
============================================================

Thin wrapper over the webhook REST endpoints:

- ``POST {url}?wait=true``           — create a message (returns it)
- ``PATCH {url}/messages/{id}``      — edit an existing message

Any non-2xx response raises :class:`WebhookError` carrying the status and
body.  :meth:`WebhookSender.publish_ranking` keeps one ranking message per
subscription up to date, skipping the PATCH when the body hasn't changed.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import discord
import httpx

if TYPE_CHECKING:
    from wrwatch.services.subscription_service import Subscription

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Webhook call answered with a non-2xx status."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Webhook request failed: {status}: {body[:300]}")
        self.status = status
        self.body = body


def _check(response: httpx.Response) -> None:
    if not response.is_success:
        raise WebhookError(response.status_code, response.text)


class WebhookSender:
    """Posts and edits webhook messages over the shared HTTP client."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def execute(self, url: str, body: dict[str, Any], *, wait: bool = False) -> dict | None:
        """Create a message.  With ``wait=True`` the created message is returned."""
        response = await self._http.post(
            url, json=body, params={"wait": "true"} if wait else None,
        )
        _check(response)
        if wait:
            return response.json()
        return None

    async def edit(self, url: str, message_id: str, body: dict[str, Any]) -> None:
        response = await self._http.patch(f"{url.rstrip('/')}/messages/{message_id}", json=body)
        _check(response)

    async def send_embed(self, url: str, embed: discord.Embed) -> None:
        await self.execute(url, {"embeds": [embed.to_dict()]})

    async def publish_ranking(self, subscription: Subscription, body: dict[str, Any]) -> bool:
        """Create or edit *subscription*'s ranking message.

        Updates ``ranking_message_id`` / ``ranking_message_cache`` on the
        subscription in place and returns True when either changed; the
        caller persists them.
        """
        url = subscription.ranking_webhook_url
        if not url:
            return False

        serialized = json.dumps(body, sort_keys=True, ensure_ascii=False)
        message_id = subscription.ranking_message_id

        if message_id:
            if serialized == subscription.ranking_message_cache:
                logger.debug("Ranking message %s unchanged; edit skipped", message_id)
                return False
            await self.edit(url, message_id, body)
            subscription.ranking_message_cache = serialized
            return True

        if serialized == subscription.ranking_message_cache:
            # Posted before without an id coming back; avoid reposting the same body
            logger.debug("Ranking for %s unchanged and message id unknown; post skipped", subscription.name)
            return False

        message = await self.execute(url, body, wait=True)
        message_id = str((message or {}).get("id") or "") or None
        if message_id is None:
            logger.warning(
                "Ranking message for %s was created but no id came back; it cannot be edited",
                subscription.name,
            )
        subscription.ranking_message_id = message_id
        subscription.ranking_message_cache = serialized
        logger.info(
            "Ranking message created for %s (id=%s)",
            subscription.name, subscription.ranking_message_id,
        )
        return True
