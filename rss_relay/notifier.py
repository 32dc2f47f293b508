from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from .exceptions import DeliveryError, RateLimitExhausted, RateLimitSignal
from .models import DeliveryFailureLog, DeliveryResult, NewsItem
from .storage import NewsStore
from .transports import Transport

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_DELAY_SEC = 1.0
DEFAULT_MAX_ATTEMPTS = 2
RATE_LIMIT_PADDING_SEC = 1.0

Sleep = Callable[[float], Awaitable[None]]


class Notifier:
    """
    Deliver news items to a destination channel, one at a time.

    Items with an image go out as rich messages; if the transport reports a
    delivery error other than rate limiting, the item is resent as plain text.
    Any other exception fails the item without stopping the batch. Rate limits are
    waited out and retried, at most ``max_attempts`` calls per message.
    """

    def __init__(
        self,
        transport: Transport,
        store: NewsStore,
        *,
        message_delay: float = DEFAULT_MESSAGE_DELAY_SEC,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rate_limit_padding: float = RATE_LIMIT_PADDING_SEC,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._store = store
        self.message_delay = message_delay
        self.max_attempts = max(1, int(max_attempts))
        self.rate_limit_padding = rate_limit_padding
        self._sleep = sleep

    async def _call_with_retry(self, send: Callable[[], Awaitable[None]], what: str) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await send()
                return
            except RateLimitSignal as e:
                if attempt >= self.max_attempts:
                    raise RateLimitExhausted(
                        f"Still rate limited after {attempt} attempts ({what})",
                        details=str(e),
                    ) from e
                wait = e.retry_after + self.rate_limit_padding
                logger.warning("Rate limit hit (%s). Retrying after %.1f seconds.", what, wait)
                await self._sleep(wait)

    async def deliver(self, item: NewsItem, channel: str) -> DeliveryResult:
        try:
            body = self._transport.render(item)
            if item.image_url:
                try:
                    await self._call_with_retry(
                        lambda: self._transport.send_photo(channel, item.image_url, body), "photo"
                    )
                    logger.info("Photo sent to %s: %s", channel, item.title)
                    return DeliveryResult(ok=True)
                except RateLimitExhausted:
                    raise
                except DeliveryError as e:
                    logger.warning(
                        "Failed to send photo (fallback to text): %s - ImageUrl: %s (%s)",
                        item.title, item.image_url, e,
                    )

            await self._call_with_retry(lambda: self._transport.send_text(channel, body), "message")
            logger.info("Message sent to %s: %s", channel, item.title)
            return DeliveryResult(ok=True)
        except DeliveryError as e:
            logger.error("Delivery failed for %s (%s): %s", item.link, channel, e)
            await self._record_failure(item, e)
            return DeliveryResult(ok=False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error delivering %s to %s", item.link, channel)
            error = DeliveryError(f"Unexpected delivery error: {type(e).__name__}: {e}", details=repr(e))
            await self._record_failure(item, error)
            return DeliveryResult(ok=False, error=str(error))

    async def _record_failure(self, item: NewsItem, error: DeliveryError) -> None:
        log = DeliveryFailureLog(
            source=item.source,
            link=item.link,
            title=item.title,
            summary=item.summary,
            image_url=item.image_url,
            error=str(error),
            details=error.details,
        )
        try:
            await self._store.append_delivery_failure(log)
        except Exception:
            logger.exception("Could not record delivery failure for %s", item.link)

    async def deliver_batch(
        self,
        items: Sequence[NewsItem],
        channel: str,
        stop_event: Optional[asyncio.Event] = None,
    ) -> Tuple[int, int, bool]:
        """
        Send items in order with ``message_delay`` seconds between messages.

        Returns (sent, failed, interrupted). ``interrupted`` is True when a
        shutdown request stopped the batch before every item was attempted.
        """
        sent = failed = 0
        for index, item in enumerate(items):
            if stop_event is not None and stop_event.is_set():
                logger.info("Shutdown requested; %d items left unsent", len(items) - index)
                return sent, failed, True
            if index > 0 and self.message_delay > 0:
                await self._sleep(self.message_delay)
            result = await self.deliver(item, channel)
            if result.ok:
                sent += 1
            else:
                failed += 1
        return sent, failed, False
