"""
wrwatch.__main__ — Entry point for ``python -m wrwatch``
========================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the shared HTTP client and the upstream clients.
5. Build the session manager, synchronizer and dispatcher.
6. Start the sync and dispatch loops and run until interrupted.

Run with::

    python -m wrwatch --config config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from wrwatch.clients.http import build_http_client
from wrwatch.clients.nadeo import NadeoAuthClient, NadeoClient
from wrwatch.clients.oauth import TrackmaniaOAuthClient
from wrwatch.clients.ubisoft import UbisoftClient
from wrwatch.config import Secrets, WrwatchConfig, load_config, load_secrets
from wrwatch.database.engine import create_db_engine, init_db
from wrwatch.services.notification_service import NotificationDispatcher
from wrwatch.services.record_service import LeaderboardDiffer
from wrwatch.services.replay_service import ReplayArchiver
from wrwatch.services.session_service import SessionManager
from wrwatch.services.subscription_service import single_subscription
from wrwatch.services.sync_service import Synchronizer
from wrwatch.services.webhook_service import WebhookSender
from wrwatch.worker import SyncWorker

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("wrwatch")


async def run(cfg: WrwatchConfig, secrets: Secrets, engine) -> None:
    """Build every component and run the loops until cancelled."""
    async with build_http_client(secrets.user_agent) as http:
        session = SessionManager(
            engine,
            UbisoftClient(http, secrets.ubisoft_email, secrets.ubisoft_password),
            NadeoAuthClient(http),
        )
        nadeo = NadeoClient(http, session)
        oauth = TrackmaniaOAuthClient(http, secrets.oauth_client_id, secrets.oauth_client_secret)
        sender = WebhookSender(http)

        subscriptions = None
        if cfg.mode == "single":
            subscriptions = [single_subscription(cfg, secrets)]

        synchronizer = Synchronizer(
            engine,
            session,
            nadeo,
            oauth,
            sender,
            LeaderboardDiffer(engine, nadeo, leaderboard_length=cfg.leaderboard_length),
            subscriptions=subscriptions,
            ranking_length=cfg.ranking_length,
            activity_page_size=cfg.activity_page_size,
        )

        archiver = None
        if cfg.replay_storage is not None:
            archiver = ReplayArchiver(http, cfg.replay_storage)
            logger.info("Replay archival enabled → %s", cfg.replay_storage)

        dispatcher = NotificationDispatcher(engine, sender, archiver, nadeo.replay_url)

        worker = SyncWorker(synchronizer, dispatcher, cfg)
        worker.start()
        try:
            await asyncio.Event().wait()
        finally:
            worker.stop()


def main(argv: list[str] | None = None) -> None:
    """Bootstrap and run the tracker."""
    parser = argparse.ArgumentParser(prog="wrwatch", description="Campaign world-record tracker")
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    args = parser.parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config(args.config)
        secrets = load_secrets()
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    logger.info("Config loaded — mode: %s", cfg.mode)

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    init_db(engine)

    # 4-6. Clients, services and loops.
    logger.info("Starting wrwatch…")
    try:
        asyncio.run(run(cfg, secrets, engine))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
