from __future__ import annotations

from datetime import datetime
from typing import Optional

from .models import NewsItem, RawFeedItem, utcnow
from .strategies import DEFAULT, ExtractionStrategy

NO_TITLE = "No title"


def resolve_published_at(item: RawFeedItem, fetched_at: Optional[datetime] = None) -> datetime:
    """Priority: published -> updated -> fetch time."""
    if item.published is not None:
        return item.published
    if item.updated is not None:
        return item.updated
    return fetched_at or utcnow()


class ItemNormalizer:
    """
    Convert RawFeedItem into NewsItem using a fixed algorithm.

    Sources only vary the ExtractionStrategy (image pick, summary cleanup).
    """

    def __init__(self, strategy: ExtractionStrategy = DEFAULT) -> None:
        self.strategy = strategy

    def normalize(
        self,
        item: RawFeedItem,
        source_name: str,
        *,
        fetched_at: Optional[datetime] = None,
    ) -> Optional[NewsItem]:
        """
        Return a NewsItem, or None when the item has no usable link.

        Every other missing field has a default: title -> "No title",
        summary -> "", published date -> updated date -> fetch time.
        """
        link = (item.link or "").strip()
        if not link:
            return None

        title = (item.title or "").strip() or NO_TITLE
        summary = self.strategy.clean_summary((item.summary or "").strip())

        return NewsItem(
            title=title,
            summary=summary,
            link=link,
            source=source_name,
            published_at=resolve_published_at(item, fetched_at),
            image_url=self.strategy.extract_image(item),
        )
