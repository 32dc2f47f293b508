from __future__ import annotations

import asyncio
import logging
from typing import Dict, Mapping, Optional

import aiohttp

from .exceptions import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 20.0

# Some origins answer 403 to library user agents.
DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/rss+xml, application/xml, text/xml;q=0.9, */*;q=0.8",
}


class FeedFetcher:
    """
    Fetch raw feed bytes over HTTP.

    One fetcher (and one ``aiohttp.ClientSession``) is shared by all sources.
    There is no retry here: a failed URL is skipped for the current tick.
    """

    def __init__(
        self,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    @staticmethod
    def build_headers(
        headers: Optional[Mapping[str, str]] = None,
        referrer: Optional[str] = None,
    ) -> Dict[str, str]:
        merged = dict(DEFAULT_HEADERS)
        if headers:
            merged.update(headers)
        if referrer:
            merged["Referer"] = referrer
        return merged

    async def fetch(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        referrer: Optional[str] = None,
    ) -> bytes:
        """
        Return the body of ``url``.

        Raises FetchError on network errors, timeouts and non-2xx responses.
        """
        session = self._get_session()
        try:
            async with session.get(
                url,
                headers=self.build_headers(headers, referrer),
                timeout=self._timeout,
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    body = await resp.text(errors="replace")
                    raise FetchError(url, f"HTTP {resp.status}: {body[:200]}")
                data = await resp.read()
        except asyncio.TimeoutError as e:
            raise FetchError(url, "timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(url, e) from e

        logger.debug("Fetched %d bytes from %s", len(data), url)
        return data
