"""
wrwatch.services.replay_service — Replay archival
==================================================

Downloads the replay of a new world record to::

    <root>/<campaign_uid>/<track_uid>/<track>_<score>_<player>_<record_uid>.Replay.Gbx

An existing file is never overwritten (``FileExistsError``), and a file
left behind by a failed download is removed so the next delivery can
try again.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

import httpx

from wrwatch.clients.http import UpstreamDataError
from wrwatch.services.embeds import strip_format_codes

logger = logging.getLogger(__name__)

REPLAY_EXTENSION = ".Replay.Gbx"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename_part(text: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", strip_format_codes(text)).strip("._")
    return cleaned or "unknown"


def replay_path(
    root: Path,
    *,
    campaign_uid: str,
    track_uid: str,
    track_name: str,
    score: int,
    user_name: str,
    record_uid: str,
) -> Path:
    filename = "_".join([
        safe_filename_part(track_name),
        str(score),
        safe_filename_part(user_name),
        safe_filename_part(record_uid),
    ]) + REPLAY_EXTENSION
    return root / safe_filename_part(campaign_uid) / safe_filename_part(track_uid) / filename


class ReplayArchiver:
    """Streams replay files from the provider's storage to disk."""

    def __init__(self, http: httpx.AsyncClient, root: Path, chunk_size: int = 64 * 1024) -> None:
        self._http = http
        self.root = root
        self._chunk_size = chunk_size

    async def archive(self, url: str, target: Path) -> Path:
        """Download *url* to *target*.

        Raises
        ------
        FileExistsError
            If *target* already exists (it is left untouched).
        UpstreamDataError
            If the download answers with a non-2xx status.
        """
        # File operations run in a worker thread to keep the loop free
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        handle = await asyncio.to_thread(open, target, "xb")
        try:
            try:
                async with self._http.stream("GET", url) as response:
                    if not response.is_success:
                        raise UpstreamDataError(f"Replay download {url} → {response.status_code}")
                    async for chunk in response.aiter_bytes(self._chunk_size):
                        await asyncio.to_thread(handle.write, chunk)
            finally:
                await asyncio.to_thread(handle.close)
        except Exception:
            await asyncio.to_thread(target.unlink, missing_ok=True)
            raise

        logger.info("Replay archived → %s", target)
        return target
