"""
Per-source extraction strategies.

A strategy bundles two pure functions: one picks the item's image URL from its
Media RSS extensions, the other cleans the summary. The normalization algorithm
itself never changes; sources only differ in which strategy they are given.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from .exceptions import ConfigError
from .models import MediaElement, RawFeedItem, SourceDescriptor

ImageExtractor = Callable[[RawFeedItem], Optional[str]]
SummaryCleaner = Callable[[str], str]

LOW_RES_SEGMENT = "/240/"
HIGH_RES_SEGMENT = "/1024/"
SUMMARY_MAX_CHARS = 800
ELLIPSIS = "..."

_TAG_RE = re.compile(r"<.*?>")


@dataclass(frozen=True)
class ExtractionStrategy:
    name: str
    image_extractor: ImageExtractor
    summary_cleaner: SummaryCleaner

    def extract_image(self, item: RawFeedItem) -> Optional[str]:
        return self.image_extractor(item)

    def clean_summary(self, summary: str) -> str:
        return self.summary_cleaner(summary)


# ----------------------------------------------------------------------
# Image extractors
# ----------------------------------------------------------------------

def _first_with_url(elements: Iterable[MediaElement], name: str) -> Optional[str]:
    for el in elements:
        if el.name == name:
            url = el.get("url")
            if url:
                return url
    return None


def base_image(item: RawFeedItem) -> Optional[str]:
    """First ``media:content`` with a url, else first ``media:thumbnail`` with a url."""
    return _first_with_url(item.extensions, "content") or _first_with_url(item.extensions, "thumbnail")


def quality_upgrade_image(item: RawFeedItem) -> Optional[str]:
    url = base_image(item)
    if url and LOW_RES_SEGMENT in url:
        url = url.replace(LOW_RES_SEGMENT, HIGH_RES_SEGMENT)
    return url


def _dimension(el: MediaElement, key: str) -> int:
    try:
        return int(el.get(key) or 0)
    except ValueError:
        return 0


def best_of_n_image(item: RawFeedItem) -> Optional[str]:
    """Largest thumbnail/content candidate by width, then height."""
    candidates = [
        el for el in item.extensions
        if el.name in ("content", "thumbnail") and el.get("url")
    ]
    if not candidates:
        return None
    # max() keeps the first of equal candidates
    best = max(candidates, key=lambda el: (_dimension(el, "width"), _dimension(el, "height")))
    return best.get("url")


def widest_content_image(item: RawFeedItem) -> Optional[str]:
    """Widest ``media:content`` whose medium is image or unset; thumbnails and video are ignored."""
    candidates = [
        el for el in item.extensions
        if el.name == "content" and el.get("medium") in (None, "image") and el.get("url")
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda el: _dimension(el, "width")).get("url")


def media_group_image(item: RawFeedItem) -> Optional[str]:
    url = base_image(item)
    if url:
        return url
    for group in item.extensions:
        if group.name != "group":
            continue
        for child in group.children:
            if child.name == "content" and child.get("medium") == "image" and child.get("url"):
                return child.get("url")
        return None
    return None


# ----------------------------------------------------------------------
# Summary cleaners
# ----------------------------------------------------------------------

def keep_summary(summary: str) -> str:
    return summary


def sanitize_summary(summary: str) -> str:
    """Strip markup tags and cap the length at SUMMARY_MAX_CHARS plus an ellipsis."""
    if not summary:
        return summary
    text = _TAG_RE.sub("", summary)
    if len(text) > SUMMARY_MAX_CHARS:
        text = text[:SUMMARY_MAX_CHARS] + ELLIPSIS
    return text


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------

DEFAULT = ExtractionStrategy("default", base_image, keep_summary)

STRATEGIES: Dict[str, ExtractionStrategy] = {
    s.name: s
    for s in (
        DEFAULT,
        ExtractionStrategy("quality_upgrade", quality_upgrade_image, keep_summary),
        ExtractionStrategy("best_of_n", best_of_n_image, keep_summary),
        ExtractionStrategy("media_group", media_group_image, keep_summary),
        ExtractionStrategy("sanitized_summary", base_image, sanitize_summary),
        ExtractionStrategy("guardian", widest_content_image, sanitize_summary),
    )
}

# Sources known to need a specific strategy, keyed by lower-cased source name.
SOURCE_STRATEGIES: Dict[str, str] = {
    "bbc": "quality_upgrade",
    "cnn": "media_group",
    "abcnews": "best_of_n",
    "guardian": "guardian",
}


def available_strategies() -> Tuple[str, ...]:
    return tuple(sorted(STRATEGIES))


def get_strategy(name: str) -> ExtractionStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown extraction strategy {name!r}; expected one of {', '.join(available_strategies())}"
        ) from None


def strategy_for(source: SourceDescriptor) -> ExtractionStrategy:
    """Explicit tag wins, then the source name, then the default strategy."""
    if source.strategy:
        return get_strategy(source.strategy)
    tag = SOURCE_STRATEGIES.get(source.name.lower())
    if tag:
        return STRATEGIES[tag]
    return DEFAULT
