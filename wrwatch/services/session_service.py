"""
wrwatch.services.session_service — Credential chain lifecycle
==============================================================

Owns the chained credentials the game services need:

    Ubisoft ticket ──► core token pair ──► live-services token pair

Each token pair is in one of three states, decided by comparing the clock
with the expiry carried inside the JWTs (never by trying a call and
waiting for a 401):

- **valid** — access token unexpired; reused as-is.
- **refreshable** — access expired, refresh token still good; refreshed.
- **unusable** — both expired; re-issued from the previous link.

The Ubisoft ticket is only requested when the core pair has to be
re-issued.  A refresh the provider rejects falls back to re-issuing the
pair once.  Any change is persisted to the ``settings`` table so a restart
resumes with the same tokens.

Usage::

    session = SessionManager(engine, ubisoft_client, nadeo_auth_client)
    credentials = await session.ensure()      # restore + login + persist
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import jwt
from pydantic import ValidationError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from wrwatch.clients.http import AuthenticationError
from wrwatch.clients.nadeo import AUDIENCE_LIVE, NadeoAuthClient
from wrwatch.clients.schemas import SessionCredentials, TokenPair, UbisoftTicket
from wrwatch.clients.ubisoft import UbisoftClient
from wrwatch.database.engine import get_session, run_db
from wrwatch.database.models import Setting

logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "session.credentials"

# Tokens are treated as expired this long before their claimed expiry
EXPIRY_MARGIN = timedelta(seconds=60)


class TokenState(enum.StrEnum):
    VALID = "valid"
    REFRESHABLE = "refreshable"
    UNUSABLE = "unusable"


# ---------------------------------------------------------------------------
# Expiry helpers
# ---------------------------------------------------------------------------
def token_expiry(token: str) -> datetime | None:
    """The ``exp`` claim of a JWT as an aware datetime, or None if unreadable."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=UTC)


def _is_live(expiry: datetime | None, now: datetime) -> bool:
    return expiry is not None and now + EXPIRY_MARGIN < expiry


def pair_state(pair: TokenPair | None, now: datetime) -> TokenState:
    """Classify a token pair at *now*."""
    if pair is None:
        return TokenState.UNUSABLE
    if _is_live(token_expiry(pair.access_token), now):
        return TokenState.VALID
    if _is_live(token_expiry(pair.refresh_token), now):
        return TokenState.REFRESHABLE
    return TokenState.UNUSABLE


def ticket_is_valid(ticket: UbisoftTicket | None, now: datetime) -> bool:
    if ticket is None:
        return False
    expiration = ticket.expiration
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=UTC)
    return _is_live(expiration, now)


# ---------------------------------------------------------------------------
# Persistence (sync; call through run_db)
# ---------------------------------------------------------------------------
def load_credentials(engine: Engine) -> SessionCredentials | None:
    """Read the persisted credential set.  Corrupt blobs are logged and ignored."""
    with Session(engine) as session:
        row = session.get(Setting, CREDENTIALS_KEY)
        if row is None:
            return None
        raw = row.value_json

    try:
        return SessionCredentials.model_validate_json(raw)
    except ValidationError:
        logger.warning("Persisted credentials are unreadable; starting from scratch")
        return None


def save_credentials(engine: Engine, credentials: SessionCredentials) -> None:
    value_json = credentials.model_dump_json(by_alias=True)
    with get_session(engine) as session:
        row = session.get(Setting, CREDENTIALS_KEY)
        if row:
            row.value_json = value_json
        else:
            session.add(Setting(
                key=CREDENTIALS_KEY,
                value_json=value_json,
                category="session",
                description="Ubisoft ticket and game-service token pairs",
            ))


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------
class SessionManager:
    """Keeps the credential chain usable across cycles and restarts."""

    def __init__(
        self,
        engine: Engine,
        ubisoft: UbisoftClient,
        nadeo_auth: NadeoAuthClient,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._engine = engine
        self._ubisoft = ubisoft
        self._nadeo_auth = nadeo_auth
        self._clock = clock
        self._credentials = SessionCredentials()
        self._restored = False

    @property
    def credentials(self) -> SessionCredentials:
        return self._credentials

    async def restore(self) -> bool:
        """Load persisted credentials (first call only).  True if any were found."""
        if self._restored:
            return False
        self._restored = True

        stored = await run_db(load_credentials, self._engine)
        if stored is None:
            logger.info("No persisted session; a full login will run")
            return False

        self._credentials = stored
        logger.info("Session restored from store")
        return True

    async def login(self) -> bool:
        """Bring every link of the chain to a usable state.

        Returns True when at least one new credential was obtained.

        Raises
        ------
        AuthenticationError
            When a link cannot be (re-)issued.
        """
        now = self._clock()
        changed = False

        core, core_changed = await self._ensure_pair(
            "core", self._credentials.core, now, self._issue_core,
        )
        if core_changed:
            self._credentials.core = core
            changed = True

        live, live_changed = await self._ensure_pair(
            "live", self._credentials.live, now, lambda: self._issue_live(core),
        )
        if live_changed:
            self._credentials.live = live
            changed = True

        return changed

    async def ensure(self) -> SessionCredentials:
        """Restore once, log in as needed, persist if anything changed."""
        await self.restore()
        if await self.login():
            await run_db(save_credentials, self._engine, self._credentials)
            logger.info("Session credentials updated and persisted")
        return self._credentials

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    async def _ensure_pair(
        self,
        label: str,
        pair: TokenPair | None,
        now: datetime,
        issue: Callable[[], Awaitable[TokenPair]],
    ) -> tuple[TokenPair, bool]:
        state = pair_state(pair, now)
        if state is TokenState.VALID:
            return pair, False

        if state is TokenState.REFRESHABLE:
            try:
                refreshed = await self._nadeo_auth.refresh(pair.refresh_token)
                logger.info("Refreshed %s token pair", label)
                return refreshed, True
            except AuthenticationError as exc:
                logger.warning("Refresh of %s token pair rejected (%s); re-issuing", label, exc)

        issued = await issue()
        logger.info("Issued new %s token pair", label)
        return issued, True

    async def _ticket(self) -> UbisoftTicket:
        ticket = self._credentials.ubisoft
        if ticket_is_valid(ticket, self._clock()):
            return ticket

        ticket = await self._ubisoft.create_session()
        self._credentials.ubisoft = ticket
        return ticket

    async def _issue_core(self) -> TokenPair:
        ticket = await self._ticket()
        return await self._nadeo_auth.authenticate_ubisoft(ticket.ticket)

    async def _issue_live(self, core: TokenPair) -> TokenPair:
        return await self._nadeo_auth.authenticate_audience(core.access_token, AUDIENCE_LIVE)

