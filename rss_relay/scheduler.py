from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .models import RunLog, SourceDescriptor

logger = logging.getLogger(__name__)

DEFAULT_STAGGER_SEC = 5.0

TickFactory = Callable[[SourceDescriptor, asyncio.Event], Callable[[], Awaitable[RunLog]]]


class SourceScheduler:
    """
    Poll every configured source on its own interval.

    Each source runs in its own asyncio task: source ``i`` starts after
    ``i * stagger`` seconds, then alternates tick / wait. The next wait only
    starts once the previous tick (delivery included) has returned, so ticks of
    one source never overlap. A failing tick is logged and the loop goes on.
    """

    def __init__(
        self,
        sources: Sequence[SourceDescriptor],
        make_tick: TickFactory,
        *,
        stagger: float = DEFAULT_STAGGER_SEC,
    ) -> None:
        self.sources = tuple(sources)
        self.stagger = stagger
        self._make_tick = make_tick
        self._stop = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def stop_event(self) -> asyncio.Event:
        return self._stop

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if shutdown was requested meanwhile."""
        if seconds <= 0:
            return self._stop.is_set()
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _source_loop(self, index: int, source: SourceDescriptor) -> None:
        tick = self._make_tick(source, self._stop)
        delay = index * self.stagger
        if delay > 0:
            logger.info("Applying initial delay of %.0fs for source %s", delay, source.name)
            if await self._wait(delay):
                return

        while not self._stop.is_set():
            try:
                await tick()
            except Exception:
                logger.critical("Critical error in processing %s", source.name, exc_info=True)
            if await self._wait(source.interval):
                break
        logger.info("Periodic processing for %s stopped.", source.name)

    def start(self) -> List[asyncio.Task]:
        logger.info("RSS relay started with %d sources.", len(self.sources))
        for index, source in enumerate(self.sources):
            if source.name in self._tasks:
                continue
            self._tasks[source.name] = asyncio.create_task(
                self._source_loop(index, source), name=f"source:{source.name}"
            )
        return list(self._tasks.values())

    async def run(self) -> None:
        """Start all source loops and wait until every one of them has exited."""
        tasks = self.start()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Request shutdown and wait for the loops to finish their current tick.

        Loops still running after ``timeout`` seconds are cancelled.
        """
        self._stop.set()
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            logger.warning("Cancelling %s after shutdown timeout", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
