"""
wrwatch.services.sync_service — One polling pass over every watched campaign
=============================================================================

:meth:`Synchronizer.run_once` is the unit the scheduler runs each tick:

1. Make sure the credential chain is usable (``AuthenticationError``
   aborts the whole pass).
2. Build the cycle-scoped :class:`ZoneIndex` and :class:`NameResolver`.
3. Per club: read the activity feed and resolve each subscription's
   selector to a campaign.  Subscriptions that land on the same campaign
   share one pass.
4. Per campaign: upsert the campaign and its tracks, diff every track,
   then publish the ranking message to each subscription.

Clubs, campaigns, tracks and ranking messages are isolated from each
other: a failure is logged, counted in the :class:`SyncReport`, and the
loop moves on to the next sibling.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Engine

from wrwatch.clients.http import AuthenticationError, UpstreamError
from wrwatch.clients.nadeo import NadeoClient
from wrwatch.clients.oauth import TrackmaniaOAuthClient
from wrwatch.database.engine import run_db
from wrwatch.database.models import Campaign, Record, Track
from wrwatch.engine.names import NameResolver
from wrwatch.engine.stats import generate_stats
from wrwatch.engine.zones import ZoneIndex
from wrwatch.services.campaign_service import select_campaign, upsert_campaign, upsert_track
from wrwatch.services.embeds import CampaignRanking, build_ranking_message
from wrwatch.services.record_service import LeaderboardDiffer
from wrwatch.services.session_service import SessionManager
from wrwatch.services.subscription_service import (
    Subscription,
    group_by_club,
    list_subscriptions,
    save_ranking_message,
)
from wrwatch.services.webhook_service import WebhookSender

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncReport:
    clubs: int = 0
    campaigns: int = 0
    tracks: int = 0
    new_records: int = 0
    rankings: int = 0
    failures: int = 0


@dataclass(slots=True)
class _CycleContext:
    zones: ZoneIndex
    names: NameResolver
    report: SyncReport


class Synchronizer:
    """Runs sync passes for a fixed subscription list or the stored one.

    With *subscriptions* given (single-club mode) the same objects are
    reused every pass, so a ranking message id learned on one pass is
    edited on the next.  Without it, subscriptions are reloaded from the
    ``webhook_subscriptions`` table at the start of each pass.
    """

    def __init__(
        self,
        engine: Engine,
        session: SessionManager,
        nadeo: NadeoClient,
        oauth: TrackmaniaOAuthClient,
        sender: WebhookSender,
        differ: LeaderboardDiffer,
        *,
        subscriptions: list[Subscription] | None = None,
        ranking_length: int = 5,
        activity_page_size: int = 10,
    ) -> None:
        self._engine = engine
        self._session = session
        self._nadeo = nadeo
        self._oauth = oauth
        self._sender = sender
        self._differ = differ
        self._subscriptions = subscriptions
        self._ranking_length = ranking_length
        self._activity_page_size = activity_page_size

    async def _load_subscriptions(self) -> list[Subscription]:
        if self._subscriptions is not None:
            return self._subscriptions
        return await run_db(list_subscriptions, self._engine)

    # -------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------
    async def run_once(self) -> SyncReport:
        """Run one full pass.

        Raises
        ------
        AuthenticationError
            If the credential chain can't be made usable.
        """
        await self._session.ensure()

        ctx = _CycleContext(
            zones=ZoneIndex(await self._nadeo.zones()),
            names=NameResolver(self._oauth),
            report=SyncReport(),
        )

        subscriptions = await self._load_subscriptions()
        if not subscriptions:
            logger.info("No subscriptions; nothing to sync")
            return ctx.report

        for club_id, club_subscriptions in group_by_club(subscriptions).items():
            ctx.report.clubs += 1
            try:
                await self._sync_club(club_id, club_subscriptions, ctx)
            except AuthenticationError:
                raise
            except UpstreamError as exc:
                ctx.report.failures += 1
                logger.warning("Club %s skipped: %s", club_id, exc)
            except Exception:
                ctx.report.failures += 1
                logger.exception("Club %s sync failed", club_id, extra={"task": "sync"})

        logger.info(
            "Sync pass: %d clubs, %d campaigns, %d tracks, %d new records, %d failures "
            "(zone cache %d hits / %d misses)",
            ctx.report.clubs, ctx.report.campaigns, ctx.report.tracks,
            ctx.report.new_records, ctx.report.failures,
            ctx.zones.hits, ctx.zones.misses,
        )
        return ctx.report

    async def _sync_club(
        self, club_id: int, subscriptions: list[Subscription], ctx: _CycleContext,
    ) -> None:
        feed = await self._nadeo.club_activity(club_id, 0, self._activity_page_size)

        groups: dict[int, list[Subscription]] = {}
        for subscription in subscriptions:
            try:
                activity = select_campaign(feed.activity_list, subscription.name)
            except re.error as exc:
                ctx.report.failures += 1
                logger.warning(
                    "Invalid campaign selector %r in club %s: %s", subscription.name, club_id, exc,
                )
                continue
            if activity is None:
                logger.warning("Campaign %r not found in club %s", subscription.name, club_id)
                continue
            groups.setdefault(activity.campaign_id, []).append(subscription)

        for campaign_id, group in groups.items():
            try:
                await self._sync_campaign(club_id, campaign_id, group, ctx)
            except AuthenticationError:
                raise
            except UpstreamError as exc:
                ctx.report.failures += 1
                logger.warning("Campaign %s of club %s skipped: %s", campaign_id, club_id, exc)
            except Exception:
                ctx.report.failures += 1
                logger.exception(
                    "Campaign %s of club %s sync failed", campaign_id, club_id,
                    extra={"task": "sync"},
                )

    async def _sync_campaign(
        self,
        club_id: int,
        campaign_id: int,
        subscriptions: list[Subscription],
        ctx: _CycleContext,
    ) -> None:
        detail = (await self._nadeo.club_campaign(club_id, campaign_id)).campaign
        campaign = await run_db(upsert_campaign, self._engine, detail)
        if campaign is None:
            ctx.report.failures += 1
            logger.warning("Failed to find or create campaign %s", detail.name)
            return
        ctx.report.campaigns += 1

        maps = {info.map_uid: info for info in await self._nadeo.maps([e.map_uid for e in detail.playlist])}
        webhook_urls = list(dict.fromkeys(s.webhook_url for s in subscriptions if s.webhook_url))

        tracks: list[Track] = []
        track_wrs: dict[str, list[Record]] = {}
        for entry in detail.playlist:
            info = maps.get(entry.map_uid)
            if info is None:
                ctx.report.failures += 1
                logger.warning("Map %s missing from map info; track skipped", entry.map_uid)
                continue

            try:
                track = await run_db(upsert_track, self._engine, campaign.uid, info)
                if track is None:
                    ctx.report.failures += 1
                    logger.warning("Failed to find or create track %s", info.name)
                    continue
                result = await self._differ.sync_track(
                    campaign, track,
                    zones=ctx.zones, names=ctx.names, webhook_urls=webhook_urls,
                )
            except AuthenticationError:
                raise
            except UpstreamError as exc:
                ctx.report.failures += 1
                logger.warning("Track %s skipped: %s", entry.map_uid, exc)
                continue
            except Exception:
                ctx.report.failures += 1
                logger.exception("Track %s sync failed", entry.map_uid, extra={"task": "sync"})
                continue

            tracks.append(track)
            track_wrs[track.uid] = result.wrs
            ctx.report.tracks += 1
            ctx.report.new_records += result.updates

        await self._publish_rankings(campaign, tracks, track_wrs, subscriptions, ctx)

    # -------------------------------------------------------------------
    # Ranking message
    # -------------------------------------------------------------------
    async def build_ranking(
        self,
        campaign: Campaign,
        tracks: list[Track],
        track_wrs: dict[str, list[Record]],
        zones: ZoneIndex,
        names: NameResolver,
    ) -> dict[str, Any]:
        """Webhook body of the ranking message for one campaign pass."""
        leaderboard = await self._nadeo.leaderboard(campaign.uid, None, 0, self._ranking_length)
        top = leaderboard.world_top()
        await names.resolve_all(entry.account_id for entry in top)

        rankings = [
            CampaignRanking(
                account_id=entry.account_id,
                name=names.cached(entry.account_id),
                zone=[zone.as_dict() for zone in zones.ancestors(entry.zone_id)],
                points=entry.sp,
            )
            for entry in top
        ]
        stats = generate_stats(zones, track_wrs)
        return build_ranking_message(campaign.name, tracks, track_wrs, stats, rankings)

    async def _publish_rankings(
        self,
        campaign: Campaign,
        tracks: list[Track],
        track_wrs: dict[str, list[Record]],
        subscriptions: list[Subscription],
        ctx: _CycleContext,
    ) -> None:
        targets = [s for s in subscriptions if s.ranking_webhook_url]
        if not targets:
            return

        try:
            body = await self.build_ranking(campaign, tracks, track_wrs, ctx.zones, ctx.names)
        except AuthenticationError:
            raise
        except UpstreamError as exc:
            ctx.report.failures += 1
            logger.warning("Ranking for %s skipped: %s", campaign.name, exc)
            return

        for subscription in targets:
            try:
                changed = await self._sender.publish_ranking(subscription, body)
                if changed:
                    ctx.report.rankings += 1
                    await run_db(save_ranking_message, self._engine, subscription)
            except Exception:
                ctx.report.failures += 1
                logger.exception(
                    "Ranking message for %r (club %s) failed",
                    subscription.name, subscription.club_id,
                    extra={"task": "ranking"},
                )
