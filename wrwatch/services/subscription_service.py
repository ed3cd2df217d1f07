"""
wrwatch.services.subscription_service — Watched campaigns
==========================================================

A subscription binds a club + campaign selector to two webhooks (record
updates and the ranking message).  In *multi* mode they live in the
``webhook_subscriptions`` table and are written by the operator command
surface; in *single* mode exactly one is built from ``config.yaml`` and
the environment and lives in memory only.

The tracker itself only writes ``ranking_message_id`` and
``ranking_message_cache``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wrwatch.config import Secrets, WrwatchConfig
from wrwatch.database.engine import get_session
from wrwatch.database.models import WebhookSubscription

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Subscription:
    """In-memory view of a watched campaign.

    ``persistent`` is False for the config-built single-club subscription,
    whose ranking message id is only remembered for the process lifetime.
    """

    club_id: int
    name: str
    webhook_url: str | None
    ranking_webhook_url: str | None
    id: str | None = None
    ranking_message_id: str | None = None
    ranking_message_cache: str = ""
    persistent: bool = True

    @classmethod
    def from_row(cls, row: WebhookSubscription) -> Subscription:
        return cls(
            id=row.id,
            club_id=row.club_id,
            name=row.name,
            webhook_url=row.webhook_url or None,
            ranking_webhook_url=row.ranking_webhook_url or None,
            ranking_message_id=row.ranking_message_id,
            ranking_message_cache=row.ranking_message_cache or "",
        )


def single_subscription(cfg: WrwatchConfig, secrets: Secrets) -> Subscription:
    """The one subscription of single-club mode."""
    return Subscription(
        club_id=cfg.club_id,
        name=cfg.campaign_name,
        webhook_url=secrets.record_webhook_url,
        ranking_webhook_url=secrets.ranking_webhook_url,
        ranking_message_id=cfg.ranking_message_id,
        persistent=False,
    )


def group_by_club(subscriptions: list[Subscription]) -> dict[int, list[Subscription]]:
    """Subscriptions keyed by club id, preserving input order."""
    grouped: dict[int, list[Subscription]] = {}
    for subscription in subscriptions:
        grouped.setdefault(subscription.club_id, []).append(subscription)
    return grouped


# ---------------------------------------------------------------------------
# Store access (sync; call through run_db)
# ---------------------------------------------------------------------------
def list_subscriptions(engine: Engine) -> list[Subscription]:
    """Every stored subscription, ordered by club then selector."""
    with Session(engine) as session:
        rows = session.scalars(
            select(WebhookSubscription).order_by(
                WebhookSubscription.club_id, WebhookSubscription.name,
            )
        )
        return [Subscription.from_row(row) for row in rows]


def add_subscription(
    engine: Engine,
    club_id: int,
    name: str,
    webhook_url: str,
    ranking_webhook_url: str,
) -> Subscription | None:
    """Register a watched campaign.  None if (club, name) is already watched."""
    row = WebhookSubscription(
        id=str(uuid.uuid4()),
        club_id=club_id,
        name=name,
        webhook_url=webhook_url,
        ranking_webhook_url=ranking_webhook_url,
        ranking_message_cache="",
    )
    with get_session(engine) as session:
        session.add(row)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            return None
        subscription = Subscription.from_row(row)
    logger.info("Subscription added: club %s, %r", club_id, name)
    return subscription


def remove_subscription(engine: Engine, club_id: int, name: str) -> bool:
    with get_session(engine) as session:
        row = session.scalar(
            select(WebhookSubscription).where(
                WebhookSubscription.club_id == club_id,
                WebhookSubscription.name == name,
            )
        )
        if row is None:
            return False
        session.delete(row)
    logger.info("Subscription removed: club %s, %r", club_id, name)
    return True


def save_ranking_message(engine: Engine, subscription: Subscription) -> None:
    """Persist the ranking message id and last-sent body of *subscription*."""
    if not subscription.persistent or subscription.id is None:
        return
    with get_session(engine) as session:
        row = session.get(WebhookSubscription, subscription.id)
        if row is None:
            logger.warning("Subscription %s vanished before its ranking message was saved", subscription.id)
            return
        row.ranking_message_id = subscription.ranking_message_id
        row.ranking_message_cache = subscription.ranking_message_cache
