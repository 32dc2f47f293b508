"""Shared fakes: in-memory store, scripted transport and fetcher."""
from __future__ import annotations

import dataclasses
from typing import Any, AbstractSet, Callable, Dict, Iterable, List, Optional, Sequence, Set

import pytest

from rss_relay.exceptions import FetchError, PersistenceError
from rss_relay.models import DeliveryFailureLog, NewsItem, RunLog


class FakeStore:
    def __init__(self) -> None:
        self.news: Dict[str, Dict[str, NewsItem]] = {}
        self.run_logs: List[RunLog] = []
        self.failures: List[DeliveryFailureLog] = []
        self.find_calls: List[Set[str]] = []
        self.indexed: List[str] = []
        self.fail_insert: Optional[str] = None
        self._next_id = 0

    async def ensure_indexes(self, source_names: Iterable[str]) -> None:
        self.indexed.extend(source_names)

    async def find_existing_links(self, source: str, links: AbstractSet[str]) -> Set[str]:
        self.find_calls.append(set(links))
        return set(links) & set(self.news.get(source, {}))

    async def insert_news(self, source: str, items: Sequence[NewsItem]) -> List[NewsItem]:
        if self.fail_insert:
            raise PersistenceError(self.fail_insert)
        coll = self.news.setdefault(source, {})
        out = []
        for item in items:
            if item.link in coll:
                continue
            self._next_id += 1
            stored = dataclasses.replace(item, id=str(self._next_id))
            coll[item.link] = stored
            out.append(stored)
        return out

    async def append_run_log(self, log: RunLog) -> None:
        self.run_logs.append(log)

    async def append_delivery_failure(self, log: DeliveryFailureLog) -> None:
        self.failures.append(log)

    async def run_log_totals(self) -> List[Dict[str, Any]]:
        totals: Dict[str, Dict[str, Any]] = {}
        for log in self.run_logs:
            row = totals.setdefault(log.source, {
                "source": log.source, "executions": 0, "total_fetched": 0,
                "new_inserted": 0, "sent": 0, "failed": 0,
            })
            row["executions"] += 1
            row["total_fetched"] += log.total_fetched
            row["new_inserted"] += log.new_inserted
            row["sent"] += log.sent
            row["failed"] += log.failed
        return list(totals.values())

    async def recent_delivery_failures(self, limit: int = 100) -> List[DeliveryFailureLog]:
        return sorted(self.failures, key=lambda f: f.timestamp, reverse=True)[:limit]


class FakeTransport:
    """Records calls; ``script`` maps "photo"/"text" to a list of exceptions to raise in order."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.script: Dict[str, List[Optional[BaseException]]] = {"photo": [], "text": []}
        self.closed = False

    def render(self, item: NewsItem) -> str:
        return f"{item.title}\n{item.link}"

    def _next(self, kind: str) -> None:
        queue = self.script[kind]
        if queue:
            exc = queue.pop(0)
            if exc is not None:
                raise exc

    async def send_text(self, channel: str, body: str) -> None:
        self.calls.append(("text", channel, body))
        self._next("text")

    async def send_photo(self, channel: str, image_url: str, body: str) -> None:
        self.calls.append(("photo", channel, image_url, body))
        self._next("photo")

    async def close(self) -> None:
        self.closed = True


class FakeFetcher:
    """Serves canned bytes per URL; a BaseException value is raised instead."""

    def __init__(self, pages: Dict[str, Any]) -> None:
        self.pages = pages
        self.requests: List[tuple] = []
        self.closed = False

    async def fetch(self, url: str, *, headers=None, referrer=None) -> bytes:
        self.requests.append((url, dict(headers or {}), referrer))
        page = self.pages.get(url)
        if page is None:
            raise FetchError(url, "HTTP 404: not found")
        if isinstance(page, BaseException):
            raise page
        return page

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def rss(*items: str) -> bytes:
    body = "".join(items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">'
        f"<channel><title>Test</title>{body}</channel></rss>"
    ).encode("utf-8")


def rss_item(link: str, title: str = "Title", extra: str = "") -> str:
    return f"<item><title>{title}</title><link>{link}</link><description>Summary</description>{extra}</item>"


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
