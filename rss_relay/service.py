from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .config import Settings
from .core import SourceRunner
from .fetcher import FeedFetcher
from .models import RunLog, SourceDescriptor
from .notifier import Notifier
from .scheduler import SourceScheduler
from .storage import MongoNewsStore, NewsStore
from .transports import Transport, create_transport

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SEC = 30.0


class RelayService:
    """
    Wire the collaborators together and own their lifetime.

    Handles are passed explicitly to every SourceRunner; nothing is looked up
    globally.
    """

    def __init__(
        self,
        sources: Sequence[SourceDescriptor],
        *,
        fetcher: FeedFetcher,
        store: NewsStore,
        transport: Transport,
        notifier: Notifier,
        stagger: float,
    ) -> None:
        self.sources = tuple(sources)
        self.fetcher = fetcher
        self.store = store
        self.transport = transport
        self.notifier = notifier
        self.scheduler = SourceScheduler(self.sources, self.make_tick, stagger=stagger)

    @classmethod
    def from_settings(cls, settings: Settings, sources: Sequence[SourceDescriptor]) -> "RelayService":
        store = MongoNewsStore.from_uri(settings.mongodb_uri, settings.mongodb_database)
        transport = create_transport(
            settings.transport, settings.transport_token, timeout_sec=settings.notify_timeout_sec
        )
        return cls(
            sources,
            fetcher=FeedFetcher(timeout_sec=settings.fetch_timeout_sec),
            store=store,
            transport=transport,
            notifier=Notifier(
                transport,
                store,
                message_delay=settings.message_delay_sec,
                max_attempts=settings.max_attempts,
            ),
            stagger=settings.stagger_sec,
        )

    def runner(self, source: SourceDescriptor, stop_event: Optional[asyncio.Event] = None) -> SourceRunner:
        return SourceRunner(
            source,
            fetcher=self.fetcher,
            store=self.store,
            notifier=self.notifier,
            stop_event=stop_event,
        )

    def make_tick(self, source: SourceDescriptor, stop_event: asyncio.Event) -> Callable[[], Awaitable[RunLog]]:
        return self.runner(source, stop_event).run_tick

    async def prepare(self) -> None:
        await self.store.ensure_indexes(s.name for s in self.sources)

    async def start(self) -> None:
        await self.prepare()
        self.scheduler.start()

    async def run_once(self) -> List[RunLog]:
        """Run a single tick for every source, one after the other."""
        await self.prepare()
        logs = []
        for source in self.sources:
            logs.append(await self.runner(source).run_tick())
        return logs

    async def close(self) -> None:
        await self.scheduler.stop(timeout=SHUTDOWN_TIMEOUT_SEC)
        for closer in (self.fetcher.close, self.transport.close, getattr(self.store, "close", None)):
            if closer is None:
                continue
            try:
                await closer()
            except Exception:
                logger.warning("Error while closing %r", closer, exc_info=True)
