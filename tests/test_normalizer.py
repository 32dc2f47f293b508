from datetime import datetime, timedelta, timezone

import pytest

from rss_relay.models import MediaElement, RawFeedItem
from rss_relay.normalizer import NO_TITLE, ItemNormalizer, resolve_published_at
from rss_relay.strategies import get_strategy

D1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
D2 = datetime(2024, 2, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize("link", [None, "", "   "])
def test_item_without_link_is_rejected(link):
    assert ItemNormalizer().normalize(RawFeedItem(title="T", link=link), "src") is None


def test_published_date_wins():
    raw = RawFeedItem(link="https://x", published=D1, updated=D2)
    assert ItemNormalizer().normalize(raw, "src").published_at == D1


def test_updated_date_is_fallback():
    raw = RawFeedItem(link="https://x", updated=D2)
    assert ItemNormalizer().normalize(raw, "src").published_at == D2


def test_current_time_is_last_resort():
    before = datetime.now(timezone.utc)
    item = ItemNormalizer().normalize(RawFeedItem(link="https://x"), "src")
    after = datetime.now(timezone.utc)
    assert before - timedelta(seconds=1) <= item.published_at <= after + timedelta(seconds=1)


def test_fetch_time_is_used_when_given():
    fetched = datetime(2030, 5, 5, tzinfo=timezone.utc)
    assert resolve_published_at(RawFeedItem(link="https://x"), fetched) == fetched


def test_defaults_and_trimming():
    item = ItemNormalizer().normalize(RawFeedItem(title="  ", summary=None, link=" https://x "), "BBC")
    assert item.title == NO_TITLE
    assert item.summary == ""
    assert item.link == "https://x"
    assert item.source == "BBC"
    assert item.image_url is None
    assert item.id is None


def test_strategy_is_applied():
    raw = RawFeedItem(
        title="T",
        summary="<p>Hello <b>World</b></p>",
        link="https://x",
        extensions=(MediaElement("thumbnail", {"url": "https://img/240/a.jpg"}),),
    )
    assert ItemNormalizer(get_strategy("guardian")).normalize(raw, "Guardian").summary == "Hello World"
    assert ItemNormalizer(get_strategy("quality_upgrade")).normalize(raw, "BBC").image_url == "https://img/1024/a.jpg"
