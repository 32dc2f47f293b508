"""
rss_relay

Poll RSS/Atom/RDF feeds per source and relay every new article to a chat channel.

Core ideas:
- Input: named sources, each with one or more feed URLs and a destination channel
- Process: fetch → parse → collapse by link → gate against storage → normalize → store → notify
- Output: one message per new article, one run log per source tick

Example
-------
import asyncio
from pathlib import Path

from rss_relay import RelayService, get_settings, load_sources

settings = get_settings()
sources = load_sources(Path("sources.json"))

async def main():
    service = RelayService.from_settings(settings, sources)
    try:
        for log in await service.run_once():
            print(log.source, log.new_inserted, log.sent, log.notes)
    finally:
        await service.close()

asyncio.run(main())
"""
__version__ = "1.1.0"

from .models import NewsItem, RawFeedItem, RunLog, SourceDescriptor
from .config import get_settings, load_sources
from .core import SourceRunner
from .scheduler import SourceScheduler
from .service import RelayService

__all__ = [
    "NewsItem",
    "RawFeedItem",
    "RunLog",
    "SourceDescriptor",
    "SourceRunner",
    "SourceScheduler",
    "RelayService",
    "get_settings",
    "load_sources",
]
