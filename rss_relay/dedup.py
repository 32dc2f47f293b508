from __future__ import annotations

import logging
from typing import AbstractSet, Iterable, List, Set

from .models import RawFeedItem
from .storage import NewsStore

logger = logging.getLogger(__name__)


def collapse_by_link(items: Iterable[RawFeedItem]) -> List[RawFeedItem]:
    """
    Remove duplicates by link within one tick.
    Keeps the first occurrence and preserves original order; items without a
    link cannot be identified and are dropped.
    """
    seen: Set[str] = set()
    out: List[RawFeedItem] = []
    skipped = 0

    for it in items:
        link = (it.link or "").strip()
        if not link:
            skipped += 1
            continue
        if link in seen:
            continue
        seen.add(link)
        out.append(it)

    if skipped:
        logger.warning("Skipped %d feed items without a link", skipped)
    return out


class DeduplicationGate:
    """
    Separate never-seen links from links already persisted for a source.

    This is an optimization in front of the store's unique index, which stays the
    authority: a duplicate that slips past is dropped by the store on insert.
    """

    def __init__(self, store: NewsStore) -> None:
        self._store = store

    async def filter(self, links: AbstractSet[str], source: str) -> Set[str]:
        if not links:
            return set()
        existing = await self._store.find_existing_links(source, links)
        new_links = set(links) - set(existing)
        logger.info(
            "%s: %d candidate links, %d already stored, %d new",
            source, len(links), len(links) - len(new_links), len(new_links),
        )
        return new_links
