from __future__ import annotations

import calendar
import io
import logging
import time
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import feedparser
from feedparser.datetimes import _parse_date
from feedparser.exceptions import CharacterEncodingOverride, NonXMLContentType

from .exceptions import ParseError, ValidationError
from .models import DIALECT_RDF, DIALECT_STANDARD, MediaElement, RawFeedItem

logger = logging.getLogger(__name__)

MEDIA_NAMESPACES = ("http://search.yahoo.com/mrss/", "http://search.yahoo.com/mrss")
ATOM_NS = "http://www.w3.org/2005/Atom"

# Raised for bytes parsed without HTTP headers or with a mislabelled charset;
# the document itself is still read.
_BENIGN_BOZO = (NonXMLContentType, CharacterEncodingOverride)
RDF_NAMESPACES = {
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "rss": "http://purl.org/rss/1.0/",
    "dc": "http://purl.org/dc/elements/1.1/",
}


def parse_feed(data: bytes, url: str, dialect: str = DIALECT_STANDARD) -> Iterator[RawFeedItem]:
    """
    Parse one fetched payload into RawFeedItem objects.

    The returned iterator is single pass. ParseError is raised for payloads that
    cannot be read at all; individual bad items are skipped and logged.
    """
    if dialect == DIALECT_STANDARD:
        return _parse_standard(data, url)
    if dialect == DIALECT_RDF:
        return _parse_rdf(data, url)
    raise ParseError(url, f"unknown dialect {dialect!r}")


# ----------------------------------------------------------------------
# Dates
# ----------------------------------------------------------------------

def _struct_to_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, time.struct_time):
        return None
    try:
        # feedparser's *_parsed values are UTC
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return None


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 / RFC 822 date string into an aware UTC datetime."""
    if not value or not value.strip():
        return None
    s = value.strip()
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return _struct_to_datetime(_parse_date(s))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ----------------------------------------------------------------------
# Media RSS extensions
# ----------------------------------------------------------------------

def _media_name(tag: Any) -> Optional[str]:
    if not isinstance(tag, str) or not tag.startswith("{"):
        return None
    ns, _, local = tag[1:].partition("}")
    if ns in MEDIA_NAMESPACES:
        return local
    return None


def _media_element(elem: ET.Element, name: str) -> MediaElement:
    children = []
    for child in elem:
        child_name = _media_name(child.tag)
        if child_name:
            children.append(_media_element(child, child_name))
    return MediaElement(name=name, attrs=dict(elem.attrib), children=tuple(children))


def _media_children(node: ET.Element) -> Tuple[MediaElement, ...]:
    out = []
    for child in node:
        name = _media_name(child.tag)
        if name:
            out.append(_media_element(child, name))
    return tuple(out)


def _node_link(node: ET.Element) -> Optional[str]:
    if node.tag == f"{{{ATOM_NS}}}entry":
        for link in node.findall(f"{{{ATOM_NS}}}link"):
            if link.get("rel", "alternate") == "alternate" and link.get("href"):
                return link.get("href").strip()
        return None
    for tag in ("link", f"{{{RDF_NAMESPACES['rss']}}}link"):
        text = node.findtext(tag)
        if text and text.strip():
            return text.strip()
    return None


def _media_by_link(data: bytes) -> Dict[str, Tuple[MediaElement, ...]]:
    """
    Map item link -> Media RSS elements, keeping ``media:group`` nesting.

    feedparser flattens groups, so this walks the raw XML. Returns an empty map
    when the payload is not well-formed XML.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError:
        logger.debug("Raw XML walk failed; using feedparser media fields")
        return {}

    item_tags = {"item", f"{{{ATOM_NS}}}entry", f"{{{RDF_NAMESPACES['rss']}}}item"}
    out: Dict[str, Tuple[MediaElement, ...]] = {}
    for node in root.iter():
        if node.tag not in item_tags:
            continue
        link = _node_link(node)
        if link and link not in out:
            out[link] = _media_children(node)
    return out


def _flat_media(entry: Mapping[str, Any]) -> Tuple[MediaElement, ...]:
    out: List[MediaElement] = []
    for key, name in (("media_content", "content"), ("media_thumbnail", "thumbnail")):
        for attrs in entry.get(key) or []:
            if isinstance(attrs, dict):
                out.append(MediaElement(name=name, attrs=dict(attrs)))
    return tuple(out)


# ----------------------------------------------------------------------
# Standard dialect (RSS 2.0 / Atom)
# ----------------------------------------------------------------------

def _entry_link(entry: Mapping[str, Any]) -> Optional[str]:
    link = entry.get("link")
    if isinstance(link, str) and link.strip():
        return link.strip()
    for candidate in entry.get("links") or []:
        href = candidate.get("href") if isinstance(candidate, dict) else None
        if isinstance(href, str) and href.strip():
            return href.strip()
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _parse_standard(data: bytes, url: str) -> Iterator[RawFeedItem]:
    feed = feedparser.parse(io.BytesIO(data), response_headers={"content-location": url})
    entries = getattr(feed, "entries", None) or []

    exc = getattr(feed, "bozo_exception", None) if getattr(feed, "bozo", 0) else None
    if isinstance(exc, _BENIGN_BOZO):
        exc = None
    if not entries and (exc is not None or not feed.get("version")):
        raise ParseError(url, str(exc) if exc else "not a recognised feed format")
    if exc is not None:
        logger.warning("Feed %s is not well-formed (%s); using %d recovered entries", url, exc, len(entries))

    media = _media_by_link(data)
    for entry in entries:
        link = _entry_link(entry)
        extensions = media.get(link) if link else None
        if extensions is None:
            extensions = _flat_media(entry)
        yield RawFeedItem(
            title=_text(entry.get("title")),
            summary=_text(entry.get("summary") or entry.get("description")),
            link=link,
            published=_struct_to_datetime(entry.get("published_parsed")),
            updated=_struct_to_datetime(entry.get("updated_parsed")),
            extensions=extensions,
        )


# ----------------------------------------------------------------------
# Legacy RDF dialect (RSS 1.0)
# ----------------------------------------------------------------------

def _rdf_item(node: ET.Element) -> RawFeedItem:
    title = _text(node.findtext("rss:title", namespaces=RDF_NAMESPACES))
    link = _text(node.findtext("rss:link", namespaces=RDF_NAMESPACES))
    if not title or not link:
        raise ValidationError("RDF item is missing title or link")
    return RawFeedItem(
        title=title,
        summary=_text(node.findtext("rss:description", namespaces=RDF_NAMESPACES)),
        link=link,
        published=parse_date(node.findtext("dc:date", namespaces=RDF_NAMESPACES)),
        extensions=_media_children(node),
    )


def _parse_rdf(data: bytes, url: str) -> Iterator[RawFeedItem]:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ParseError(url, str(e)) from e

    nodes = root.findall(".//rss:item", namespaces=RDF_NAMESPACES)
    if not nodes:
        logger.info("No items found in RDF feed %s", url)
        return
    logger.debug("Loaded %d items from RDF feed %s", len(nodes), url)

    for node in nodes:
        try:
            item = _rdf_item(node)
        except ValidationError:
            logger.warning("Item missing title or link skipped in %s", url)
            continue
        yield item
