from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigError
from .models import DEFAULT_INTERVAL_SEC, DIALECTS, DIALECT_STANDARD, SourceDescriptor
from .strategies import get_strategy

# Source names end up in collection names.
_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class Settings:
    sources_file: str
    mongodb_uri: str
    mongodb_database: str
    transport: str
    discord_token: str
    telegram_token: str
    fetch_timeout_sec: float
    notify_timeout_sec: float
    message_delay_sec: float
    max_attempts: int
    stagger_sec: float
    log_level: str
    http_host: str
    http_port: int

    @property
    def transport_token(self) -> str:
        if self.transport == "telegram":
            return self.telegram_token
        return self.discord_token


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def get_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the environment (after loading ``.env`` when no mapping is given)."""
    if env is None:
        load_dotenv()
        env = os.environ
    return Settings(
        sources_file=env.get("RSS_RELAY_SOURCES_FILE", "sources.json"),
        mongodb_uri=env.get("MONGODB_URI", "mongodb://localhost:27017"),
        mongodb_database=env.get("MONGODB_DATABASE", "NewsDb"),
        transport=env.get("NOTIFY_TRANSPORT", "discord").lower(),
        discord_token=env.get("DISCORD_BOT_TOKEN", ""),
        telegram_token=env.get("TELEGRAM_BOT_TOKEN", ""),
        fetch_timeout_sec=_float(env, "FETCH_TIMEOUT_SEC", 20.0),
        notify_timeout_sec=_float(env, "NOTIFY_TIMEOUT_SEC", 30.0),
        message_delay_sec=_float(env, "NOTIFY_MESSAGE_DELAY_SEC", 1.0),
        max_attempts=_int(env, "NOTIFY_MAX_ATTEMPTS", 2),
        stagger_sec=_float(env, "SOURCE_STAGGER_SEC", 5.0),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        http_host=env.get("HTTP_HOST", "0.0.0.0"),
        http_port=_int(env, "HTTP_PORT", 8000),
    )


def _source_from_dict(raw: Any, position: int) -> SourceDescriptor:
    if not isinstance(raw, dict):
        raise ConfigError(f"Source #{position} must be an object")

    name = str(raw.get("name") or "").strip()
    if not name or not _NAME_RE.match(name):
        raise ConfigError(f"Source #{position} needs a name made of letters, digits, '_', '.' or '-'")

    urls = raw.get("urls") or raw.get("rss_urls") or []
    if isinstance(urls, str):
        urls = [urls]
    urls = tuple(u.strip() for u in urls if isinstance(u, str) and u.strip())
    if not urls:
        raise ConfigError(f"Source {name!r} has no feed URLs")

    channel = str(raw.get("channel") or "").strip()
    if not channel:
        raise ConfigError(f"Source {name!r} has no destination channel")

    try:
        interval = float(raw.get("interval_sec", DEFAULT_INTERVAL_SEC))
    except (TypeError, ValueError):
        raise ConfigError(f"Source {name!r} has an invalid interval_sec") from None
    if interval <= 0:
        raise ConfigError(f"Source {name!r} needs a positive interval_sec")

    dialect = str(raw.get("dialect") or DIALECT_STANDARD).lower()
    if dialect not in DIALECTS:
        raise ConfigError(f"Source {name!r} has unknown dialect {dialect!r}")

    strategy = raw.get("strategy") or None
    if strategy is not None:
        get_strategy(strategy)

    headers = raw.get("headers") or {}
    if not isinstance(headers, dict):
        raise ConfigError(f"Source {name!r}: headers must be an object")

    return SourceDescriptor(
        name=name,
        urls=urls,
        channel=channel,
        interval=interval,
        dialect=dialect,
        strategy=strategy,
        headers={str(k): str(v) for k, v in headers.items()},
        referrer=raw.get("referrer") or None,
    )


def parse_sources(data: Any) -> Tuple[SourceDescriptor, ...]:
    if not isinstance(data, list):
        raise ConfigError("Sources must be a JSON list")
    sources: List[SourceDescriptor] = []
    seen: Dict[str, int] = {}
    for position, raw in enumerate(data, start=1):
        source = _source_from_dict(raw, position)
        if source.name in seen:
            raise ConfigError(f"Duplicate source name {source.name!r}")
        seen[source.name] = position
        sources.append(source)
    return tuple(sources)


def load_sources(path: Path) -> Tuple[SourceDescriptor, ...]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read sources file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Sources file {path} is not valid JSON: {e}") from e
    return parse_sources(data)
