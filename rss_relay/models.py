from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, Tuple

DIALECT_STANDARD = "standard"
DIALECT_RDF = "rdf"
DIALECTS = (DIALECT_STANDARD, DIALECT_RDF)

DEFAULT_INTERVAL_SEC = 15 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SourceDescriptor:
    """
    Configuration for one news source.

    ``name`` is the unique key; it also names the source's storage collection and
    selects the extraction strategy when ``strategy`` is not given.
    """
    name: str
    urls: Tuple[str, ...]
    channel: str
    interval: float = DEFAULT_INTERVAL_SEC
    dialect: str = DIALECT_STANDARD
    strategy: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    referrer: Optional[str] = None


@dataclass(frozen=True)
class MediaElement:
    """A Media RSS extension element (``media:content``, ``media:thumbnail``, ``media:group``)."""
    name: str
    attrs: Mapping[str, str] = field(default_factory=dict)
    children: Tuple["MediaElement", ...] = ()

    def get(self, key: str) -> Optional[str]:
        value = self.attrs.get(key)
        if value is None:
            return None
        value = str(value).strip()
        return value or None


@dataclass(frozen=True)
class RawFeedItem:
    """Dialect-neutral item as parsed from one feed; only lives until normalization."""
    title: Optional[str] = None
    summary: Optional[str] = None
    link: Optional[str] = None
    published: Optional[datetime] = None
    updated: Optional[datetime] = None
    extensions: Tuple[MediaElement, ...] = ()


@dataclass(frozen=True)
class NewsItem:
    """
    Canonical persisted record.

    ``link`` is the identity within a source's collection. ``id`` is only set on
    items returned by the store after they were persisted.
    """
    title: str
    summary: str
    link: str
    source: str
    published_at: datetime
    image_url: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class RunLog:
    source: str
    started_at: datetime
    total_fetched: int = 0
    new_inserted: int = 0
    sent: int = 0
    failed: int = 0
    notes: str = ""


@dataclass(frozen=True)
class DeliveryFailureLog:
    source: str
    link: str
    title: str
    summary: str
    error: str
    image_url: Optional[str] = None
    details: str = ""
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: Optional[str] = None
