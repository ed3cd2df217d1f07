"""
wrwatch.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for **non-secret** settings (which club and campaign
to watch, polling cadence, replay storage).  Credentials and webhook URLs
carry secrets and come from the environment (``.env`` via python-dotenv);
:func:`load_secrets` collects them.

Usage::

    from wrwatch.config import load_config, load_secrets

    cfg = load_config()          # reads ./config.yaml by default
    secrets = load_secrets()     # reads os.environ
    print(cfg.mode)              # "single"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

# Sentinel values that turn a feature off in config.yaml
REPLAY_STORAGE_DISABLED = "disabled"
RANKING_MESSAGE_UNSET = "fixme"

VALID_MODES = ("single", "multi")


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class WrwatchConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # "single": one club/campaign from this file; "multi": subscriptions table
    mode: str

    # Single-club mode
    club_id: int | None = None
    campaign_name: str | None = None
    ranking_message_id: str | None = None

    # Scheduling
    poll_interval_seconds: int = 60
    dispatch_interval_seconds: int = 5
    retry_backoff_seconds: tuple[int, ...] = (60, 300, 900)

    # Upstream paging
    leaderboard_length: int = 5
    ranking_length: int = 5
    activity_page_size: int = 10

    # Replay archival root; None disables archival
    replay_storage: Path | None = None


@dataclass(frozen=True, slots=True)
class Secrets:
    """Credentials and webhook endpoints read from the environment."""

    ubisoft_email: str
    ubisoft_password: str
    oauth_client_id: str
    oauth_client_secret: str
    user_agent: str
    record_webhook_url: str | None = None
    ranking_webhook_url: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> WrwatchConfig:
    """Read *path* and return a :class:`WrwatchConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``mode`` is unknown or single-club mode lacks its club settings.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return parse_config(raw)


def parse_config(raw: dict) -> WrwatchConfig:
    """Build a :class:`WrwatchConfig` from an already-parsed YAML mapping."""
    mode = str(raw.get("mode", "single")).strip().lower()
    if mode not in VALID_MODES:
        raise ValueError(f"Unknown mode {mode!r}; expected one of {VALID_MODES}")

    club_id = int(raw["club_id"]) if raw.get("club_id") else None
    campaign_name = str(raw["campaign_name"]).strip() if raw.get("campaign_name") else None
    if mode == "single" and (club_id is None or not campaign_name):
        raise ValueError("Single-club mode requires both club_id and campaign_name")

    message_id = raw.get("ranking_message_id")
    if message_id is not None:
        message_id = str(message_id).strip()
        if not message_id or message_id == RANKING_MESSAGE_UNSET:
            message_id = None

    backoff = raw.get("retry_backoff_seconds") or (60, 300, 900)

    storage = raw.get("replay_storage")
    if storage is None or str(storage).strip().lower() == REPLAY_STORAGE_DISABLED:
        replay_storage = None
    else:
        replay_storage = Path(str(storage))

    return WrwatchConfig(
        mode=mode,
        club_id=club_id,
        campaign_name=campaign_name,
        ranking_message_id=message_id,
        poll_interval_seconds=int(raw.get("poll_interval_seconds", 60)),
        dispatch_interval_seconds=int(raw.get("dispatch_interval_seconds", 5)),
        retry_backoff_seconds=tuple(int(s) for s in backoff),
        leaderboard_length=int(raw.get("leaderboard_length", 5)),
        ranking_length=int(raw.get("ranking_length", 5)),
        activity_page_size=int(raw.get("activity_page_size", 10)),
        replay_storage=replay_storage,
    )


def load_secrets() -> Secrets:
    """Collect credentials from the environment.

    Raises
    ------
    RuntimeError
        If any required credential is missing.
    """
    required = {
        "UBI_EMAIL": os.getenv("UBI_EMAIL", "").strip(),
        "UBI_PW": os.getenv("UBI_PW", "").strip(),
        "TRACKMANIA_CLIENT_ID": os.getenv("TRACKMANIA_CLIENT_ID", "").strip(),
        "TRACKMANIA_CLIENT_SECRET": os.getenv("TRACKMANIA_CLIENT_SECRET", "").strip(),
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise RuntimeError(
            "Missing credentials: " + ", ".join(missing)
            + ".  Copy .env.example → .env and fill them in."
        )

    return Secrets(
        ubisoft_email=required["UBI_EMAIL"],
        ubisoft_password=required["UBI_PW"],
        oauth_client_id=required["TRACKMANIA_CLIENT_ID"],
        oauth_client_secret=required["TRACKMANIA_CLIENT_SECRET"],
        user_agent=os.getenv("USER_AGENT", "wrwatch / contact@example.com").strip(),
        record_webhook_url=os.getenv("DISCORD_WEBHOOK_RECORD_UPDATE") or None,
        ranking_webhook_url=os.getenv("DISCORD_WEBHOOK_CAMPAIGN_UPDATE") or None,
    )
