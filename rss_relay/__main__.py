from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import uvicorn

from .config import Settings, get_settings, load_sources
from .exceptions import ConfigError
from .logging_setup import configure_logging
from .models import SourceDescriptor
from .service import RelayService
from .web import create_app

logger = logging.getLogger("rss_relay")


async def _run_once(settings: Settings, sources: Sequence[SourceDescriptor]) -> None:
    service = RelayService.from_settings(settings, sources)
    try:
        for log in await service.run_once():
            logger.info(
                "%s: fetched=%d inserted=%d sent=%d failed=%d (%s)",
                log.source, log.total_fetched, log.new_inserted, log.sent, log.failed, log.notes,
            )
    finally:
        await service.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="rss_relay", description="Relay new RSS articles to chat channels.")
    parser.add_argument("--sources", help="Path to the sources JSON file (overrides RSS_RELAY_SOURCES_FILE)")
    parser.add_argument("--once", action="store_true", help="Run one tick for every source and exit")
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
        configure_logging(settings.log_level)
        sources = load_sources(Path(args.sources or settings.sources_file))
        if not settings.transport_token:
            raise ConfigError(f"No bot token configured for the {settings.transport} transport")
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.once:
        asyncio.run(_run_once(settings, sources))
        return 0

    app = create_app(lambda: RelayService.from_settings(settings, sources))
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
