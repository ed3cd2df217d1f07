"""
wrwatch — World-Record Tracker for Trackmania Club Campaigns
=============================================================
Polls club campaign leaderboards, records every new world record exactly
once, and announces it through Discord webhooks together with a live
ranking message per campaign.

Package layout::

    wrwatch/
    ├── __main__.py        # python -m wrwatch
    ├── config.py          # YAML → typed Python config
    ├── worker.py          # discord.ext.tasks loops + retry backoff
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Campaigns, tracks, records, jobs, subscriptions
    ├── clients/
    │   ├── http.py        # httpx client factory + error taxonomy
    │   ├── schemas.py     # Validated upstream DTOs (pydantic)
    │   ├── ubisoft.py     # Platform identity (ticket)
    │   ├── nadeo.py       # Game-service tokens + queries
    │   └── oauth.py       # Display-name lookups
    ├── engine/
    │   ├── zones.py       # Zone hierarchy index (cycle-scoped cache)
    │   ├── names.py       # Display-name resolver (cycle-scoped cache)
    │   └── stats.py       # WR holder / country leaderboards
    └── services/
        ├── session_service.py       # Credential chain lifecycle
        ├── campaign_service.py      # Campaign/track idempotent upserts
        ├── record_service.py        # WR diff + atomic record/job write
        ├── subscription_service.py  # Watched campaigns
        ├── sync_service.py          # One polling pass
        ├── notification_service.py  # Durable queue consumer
        ├── webhook_service.py       # Discord webhook send/edit
        ├── replay_service.py        # Replay archival
        └── embeds.py                # Message builders
"""

__version__ = "0.1.0"
