"""
Notification transports.

A transport turns a NewsItem into a message body and posts it to one channel.
Transports only translate remote failures: a rate limit becomes
RateLimitSignal, anything else becomes DeliveryError. Retrying and falling back
is the Notifier's job.
"""
from __future__ import annotations

import asyncio
import html
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp
import discord

from .exceptions import ConfigError, DeliveryError, RateLimitSignal
from .models import NewsItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0

DISCORD_MESSAGE_LIMIT = 2000
DISCORD_EMBED_LIMIT = 4096
TELEGRAM_MESSAGE_LIMIT = 4096
TELEGRAM_CAPTION_LIMIT = 1024


class Transport(Protocol):
    def render(self, item: NewsItem) -> str:  # pragma: no cover - interface
        ...

    async def send_text(self, channel: str, body: str) -> None:  # pragma: no cover - interface
        ...

    async def send_photo(self, channel: str, image_url: str, body: str) -> None:  # pragma: no cover - interface
        ...

    async def close(self) -> None:  # pragma: no cover - interface
        ...


def _truncate(s: str, limit: int) -> str:
    if len(s) <= limit:
        return s
    return s[: limit - 3] + "..."


def _as_seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _retry_after_header(headers: Any) -> Optional[float]:
    if not headers:
        return None
    return _as_seconds(headers.get("Retry-After"))


class DiscordTransport:
    """Post to Discord channels with a bot token (REST only, no gateway connection)."""

    def __init__(
        self,
        token: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        client: Optional[discord.Client] = None,
    ) -> None:
        self._token = token
        self._timeout = timeout_sec
        # Rate limits longer than 30s surface as discord.RateLimited instead of
        # blocking inside the library.
        self._client = client or discord.Client(intents=discord.Intents.none(), max_ratelimit_timeout=30.0)
        self._logged_in = client is not None
        self._login_lock = asyncio.Lock()

    def render(self, item: NewsItem) -> str:
        body = f"**{item.title}**\n\n"
        if item.summary:
            body += f"{item.summary}\n\n"
        body += f"*{item.source} - {item.published_at.strftime('%Y-%m-%d %H:%M')}*\n"
        body += f"<{item.link}>"
        return _truncate(body, DISCORD_MESSAGE_LIMIT)

    async def _ensure_login(self) -> None:
        async with self._login_lock:
            if not self._logged_in:
                await self._client.login(self._token)
                self._logged_in = True

    async def _send(self, channel: str, **kwargs: Any) -> None:
        try:
            channel_id = int(channel)
        except ValueError:
            raise DeliveryError(f"Invalid Discord channel id: {channel!r}") from None

        try:
            await self._ensure_login()
            target = self._client.get_partial_messageable(channel_id)
            await asyncio.wait_for(target.send(**kwargs), timeout=self._timeout)
        except discord.RateLimited as e:
            raise RateLimitSignal(e.retry_after) from e
        except discord.HTTPException as e:
            if e.status == 429:
                retry_after = _retry_after_header(getattr(e.response, "headers", None))
                if retry_after is not None:
                    raise RateLimitSignal(retry_after) from e
            raise DeliveryError(f"Discord API error: {e.status} - {e.text}", details=str(e)) from e
        except discord.ClientException as e:
            # LoginFailure (bad token) is a ClientException too
            raise DeliveryError(f"Discord client error: {e}", details=repr(e)) from e
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"Discord request timed out after {self._timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Discord connection error: {e}") from e

    async def send_text(self, channel: str, body: str) -> None:
        await self._send(channel, content=body)

    async def send_photo(self, channel: str, image_url: str, body: str) -> None:
        embed = discord.Embed(description=_truncate(body, DISCORD_EMBED_LIMIT))
        embed.set_image(url=image_url)
        await self._send(channel, embed=embed)

    async def close(self) -> None:
        await self._client.close()


class TelegramTransport:
    """Post to Telegram chats through the Bot API."""

    API_BASE = "https://api.telegram.org"

    def __init__(
        self,
        token: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session = session
        self._owns_session = session is None

    def render(self, item: NewsItem) -> str:
        head = f"<b>{html.escape(item.title)}</b>\n\n"
        tail = (
            f"\n\n📅 {item.published_at.strftime('%Y-%m-%d')}\n\n"
            f'🔗 <a href="{html.escape(item.link)}">Read more</a>'
        )
        # Captions are the tighter limit; trim the summary before escaping so
        # the HTML stays valid.
        room = TELEGRAM_CAPTION_LIMIT - len(head) - len(tail)
        summary = item.summary
        if len(html.escape(summary)) > room:
            summary = summary[: max(0, room - 3)]
            while summary and len(html.escape(summary)) > room - 3:
                summary = summary[:-1]
            summary += "..."
        return head + html.escape(summary) + tail

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _call(self, method: str, payload: Dict[str, Any]) -> None:
        url = f"{self.API_BASE}/bot{self._token}/{method}"
        try:
            async with self._get_session().post(url, json=payload, timeout=self._timeout) as resp:
                text = await resp.text()
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = {}
                status = resp.status
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"Telegram API call {method} timed out") from e
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Telegram connection error ({method}): {e}") from e

        if not isinstance(data, dict):
            data = {}
        if status == 429:
            parameters = data.get("parameters")
            retry_after = _as_seconds(parameters.get("retry_after") if isinstance(parameters, dict) else None)
            if retry_after is not None:
                raise RateLimitSignal(retry_after)
        if status != 200 or not data.get("ok", False):
            raise DeliveryError(
                f"Telegram API error ({method}): {status} - {data.get('description') or text[:200]}",
                details=text[:1000],
            )

    async def send_text(self, channel: str, body: str) -> None:
        await self._call("sendMessage", {
            "chat_id": channel,
            "text": _truncate(body, TELEGRAM_MESSAGE_LIMIT),
            "parse_mode": "HTML",
            "disable_web_page_preview": False,
        })

    async def send_photo(self, channel: str, image_url: str, body: str) -> None:
        await self._call("sendPhoto", {
            "chat_id": channel,
            "photo": image_url,
            "caption": body,
            "parse_mode": "HTML",
        })

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


TRANSPORTS = ("discord", "telegram")


def create_transport(kind: str, token: str, *, timeout_sec: float = DEFAULT_TIMEOUT_SEC) -> Transport:
    if not token:
        raise ConfigError(f"No bot token configured for the {kind} transport")
    kind = (kind or "").lower()
    if kind == "discord":
        return DiscordTransport(token, timeout_sec=timeout_sec)
    if kind == "telegram":
        return TelegramTransport(token, timeout_sec=timeout_sec)
    raise ConfigError(f"Unknown notification transport {kind!r}; expected one of {', '.join(TRANSPORTS)}")
