from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from .dedup import DeduplicationGate, collapse_by_link
from .exceptions import FetchError, ParseError, PersistenceError
from .fetcher import FeedFetcher
from .models import NewsItem, RawFeedItem, RunLog, SourceDescriptor, utcnow
from .normalizer import ItemNormalizer
from .notifier import Notifier
from .parser import parse_feed
from .storage import NewsStore
from .strategies import strategy_for

logger = logging.getLogger(__name__)

NOTE_NO_NEW_ITEMS = "No new items"
NOTE_NO_VALID_ITEMS = "No valid new items after parsing"
NOTE_CANCELLED = "Cancelled: shutdown requested"
NOTE_INSERT_FAILED = "Insert failed: "
NOTE_DEDUP_FAILED = "Dedup lookup failed: "
NOTE_CRITICAL = "Critical error: "


class SourceRunner:
    """
    Run one tick for one source.

    Pipeline: fetch (all URLs concurrently) → parse → collapse by link → gate
    against storage → normalize new items → insert batch → notify → run log.

    Every tick writes exactly one RunLog, whichever way it ends.
    """

    def __init__(
        self,
        source: SourceDescriptor,
        *,
        fetcher: FeedFetcher,
        store: NewsStore,
        notifier: Notifier,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.source = source
        self._fetcher = fetcher
        self._store = store
        self._notifier = notifier
        self._gate = DeduplicationGate(store)
        self._normalizer = ItemNormalizer(strategy_for(source))
        self._stop = stop_event or asyncio.Event()

    async def _fetch_one(self, url: str) -> List[RawFeedItem]:
        try:
            data = await self._fetcher.fetch(url, headers=self.source.headers, referrer=self.source.referrer)
            items = list(parse_feed(data, url, self.source.dialect))
        except FetchError as e:
            logger.error("Error reading RSS feed %s for source %s: %s", url, self.source.name, e.cause)
            return []
        except ParseError as e:
            logger.error("Parsing error in RSS feed %s for source %s: %s", url, self.source.name, e)
            return []
        if not items:
            logger.info("No items found in feed %s for source %s", url, self.source.name)
        else:
            logger.info("Processed feed %s - %d items found for %s", url, len(items), self.source.name)
        return items

    async def _fetch_all(self) -> List[RawFeedItem]:
        batches = await asyncio.gather(*(self._fetch_one(url) for url in self.source.urls))
        # URL order is kept so that "first seen wins" follows the configured order.
        return [item for batch in batches for item in batch]

    def _normalize(self, candidates: List[RawFeedItem], new_links: set) -> List[NewsItem]:
        fetched_at = utcnow()
        out: List[NewsItem] = []
        for raw in candidates:
            if raw.link not in new_links:
                continue
            item = self._normalizer.normalize(raw, self.source.name, fetched_at=fetched_at)
            if item is None:
                logger.warning("Failed to parse item with link: %r", raw.link)
                continue
            out.append(item)
        return out

    async def _finish(self, log: RunLog) -> RunLog:
        try:
            await self._store.append_run_log(log)
        except Exception:
            logger.exception("Could not save run log for %s", self.source.name)
        return log

    async def run_tick(self) -> RunLog:
        name = self.source.name
        started_at = utcnow()
        logger.info("Starting processing for source %s", name)
        progress = {"total_fetched": 0, "new_inserted": 0}

        def run_log(**kw) -> RunLog:
            return RunLog(source=name, started_at=started_at, **kw)

        try:
            log = await self._tick(run_log, progress)
        except Exception as e:
            logger.critical("Unexpected error while processing %s", name, exc_info=True)
            log = run_log(notes=NOTE_CRITICAL + str(e), **progress)
        return await self._finish(log)

    async def _tick(self, run_log: Callable[..., RunLog], progress: Dict[str, int]) -> RunLog:
        name = self.source.name
        started = time.monotonic()

        if self._stop.is_set():
            return run_log(notes=NOTE_CANCELLED)

        raw_items = await self._fetch_all()
        total_fetched = progress["total_fetched"] = len(raw_items)
        candidates = collapse_by_link(raw_items)
        logger.info(
            "Total unique potential news items collected: %d (from %d total fetched items)",
            len(candidates), total_fetched,
        )

        if self._stop.is_set():
            return run_log(total_fetched=total_fetched, notes=NOTE_CANCELLED)

        if not candidates:
            logger.info("No potential new items to process for %s. Finishing early.", name)
            return run_log(total_fetched=total_fetched, notes=NOTE_NO_NEW_ITEMS)

        try:
            new_links = await self._gate.filter({c.link for c in candidates}, name)
        except PersistenceError as e:
            logger.error("Failed to check stored links for source %s: %s", name, e)
            return run_log(total_fetched=total_fetched, notes=NOTE_DEDUP_FAILED + str(e))
        if not new_links:
            logger.info("No new articles to save for %s", name)
            return run_log(total_fetched=total_fetched, notes=NOTE_NO_NEW_ITEMS)

        to_insert = self._normalize(candidates, new_links)
        if not to_insert:
            logger.info("No truly new valid items to insert for %s.", name)
            return run_log(total_fetched=total_fetched, notes=NOTE_NO_VALID_ITEMS)

        if self._stop.is_set():
            return run_log(total_fetched=total_fetched, notes=NOTE_CANCELLED)

        try:
            inserted = await self._store.insert_news(name, to_insert)
        except PersistenceError as e:
            logger.error("Failed to insert news items for source %s: %s", name, e)
            return run_log(total_fetched=total_fetched, notes=NOTE_INSERT_FAILED + str(e))
        progress["new_inserted"] = len(inserted)
        logger.info("Successfully inserted %d new items into database", len(inserted))

        logger.info("Starting to send %d new items to channel %s", len(inserted), self.source.channel)
        sent, failed, interrupted = await self._notifier.deliver_batch(inserted, self.source.channel, self._stop)
        if failed:
            logger.warning("%d out of %d items failed to send for %s", failed, len(inserted), name)

        duration = time.monotonic() - started
        notes = f"Completed in {duration:.1f}s"
        if interrupted:
            notes += "; delivery interrupted by shutdown"
        logger.info(
            "Processing completed for %s in %.1f seconds. Fetched: %d, New: %d, Sent: %d, Failed: %d",
            name, duration, total_fetched, len(inserted), sent, failed,
        )
        return run_log(
            total_fetched=total_fetched,
            new_inserted=len(inserted),
            sent=sent,
            failed=failed,
            notes=notes,
        )
