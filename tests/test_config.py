import json

import pytest

from rss_relay.config import get_settings, load_sources, parse_sources
from rss_relay.exceptions import ConfigError
from rss_relay.models import DEFAULT_INTERVAL_SEC, DIALECT_RDF, DIALECT_STANDARD


def test_settings_defaults():
    s = get_settings({})
    assert s.mongodb_database == "NewsDb"
    assert s.transport == "discord"
    assert s.fetch_timeout_sec == 20.0
    assert s.notify_timeout_sec == 30.0
    assert s.message_delay_sec == 1.0
    assert s.max_attempts == 2
    assert s.stagger_sec == 5.0
    assert s.log_level == "INFO"


def test_settings_from_env():
    s = get_settings({
        "NOTIFY_TRANSPORT": "Telegram",
        "TELEGRAM_BOT_TOKEN": "tg",
        "DISCORD_BOT_TOKEN": "dc",
        "NOTIFY_MAX_ATTEMPTS": "3",
        "HTTP_PORT": "9000",
        "LOG_LEVEL": "debug",
    })
    assert s.transport == "telegram"
    assert s.transport_token == "tg"
    assert s.max_attempts == 3
    assert s.http_port == 9000
    assert s.log_level == "DEBUG"


def test_settings_reject_bad_numbers():
    with pytest.raises(ConfigError):
        get_settings({"FETCH_TIMEOUT_SEC": "soon"})
    with pytest.raises(ConfigError):
        get_settings({"HTTP_PORT": "80.5"})


def test_parse_minimal_source():
    (src,) = parse_sources([{"name": "BBC", "urls": ["https://a", " https://b "], "channel": "123"}])
    assert src.name == "BBC"
    assert src.urls == ("https://a", "https://b")
    assert src.channel == "123"
    assert src.interval == DEFAULT_INTERVAL_SEC
    assert src.dialect == DIALECT_STANDARD
    assert src.strategy is None
    assert src.referrer is None


def test_parse_full_source():
    (src,) = parse_sources([{
        "name": "DW",
        "rss_urls": "https://rss.dw.com/rdf/rss-en-all",
        "channel": "456",
        "interval_sec": 60,
        "dialect": "RDF",
        "strategy": "sanitized_summary",
        "headers": {"Accept-Language": "en"},
        "referrer": "https://www.dw.com/",
    }])
    assert src.urls == ("https://rss.dw.com/rdf/rss-en-all",)
    assert src.interval == 60.0
    assert src.dialect == DIALECT_RDF
    assert src.strategy == "sanitized_summary"
    assert src.headers == {"Accept-Language": "en"}
    assert src.referrer == "https://www.dw.com/"


@pytest.mark.parametrize("raw", [
    {"urls": ["https://a"], "channel": "1"},
    {"name": "bad name!", "urls": ["https://a"], "channel": "1"},
    {"name": "x", "urls": [], "channel": "1"},
    {"name": "x", "urls": ["https://a"]},
    {"name": "x", "urls": ["https://a"], "channel": "1", "interval_sec": 0},
    {"name": "x", "urls": ["https://a"], "channel": "1", "interval_sec": "often"},
    {"name": "x", "urls": ["https://a"], "channel": "1", "dialect": "json"},
    {"name": "x", "urls": ["https://a"], "channel": "1", "strategy": "magic"},
    {"name": "x", "urls": ["https://a"], "channel": "1", "headers": ["a"]},
    "not an object",
])
def test_invalid_sources_are_rejected(raw):
    with pytest.raises(ConfigError):
        parse_sources([raw])


def test_duplicate_names_are_rejected():
    src = {"name": "x", "urls": ["https://a"], "channel": "1"}
    with pytest.raises(ConfigError):
        parse_sources([src, dict(src)])


def test_sources_must_be_a_list():
    with pytest.raises(ConfigError):
        parse_sources({"name": "x"})


def test_load_sources(tmp_path):
    path = tmp_path / "sources.json"
    path.write_text(json.dumps([{"name": "a", "urls": ["https://a"], "channel": "1"}]), encoding="utf-8")
    assert [s.name for s in load_sources(path)] == ["a"]


def test_load_sources_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_sources(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_sources(bad)
