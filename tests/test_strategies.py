import pytest

from rss_relay.exceptions import ConfigError
from rss_relay.models import MediaElement, RawFeedItem, SourceDescriptor
from rss_relay.strategies import (
    DEFAULT,
    base_image,
    best_of_n_image,
    get_strategy,
    media_group_image,
    widest_content_image,
    quality_upgrade_image,
    sanitize_summary,
    strategy_for,
)


def media(name, children=(), **attrs):
    return MediaElement(name=name, attrs=attrs, children=tuple(children))


def item(*extensions):
    return RawFeedItem(link="https://example.com/a", extensions=tuple(extensions))


def source(name="Any", strategy=None):
    return SourceDescriptor(name=name, urls=("https://example.com/rss",), channel="1", strategy=strategy)


class TestBaseImage:
    def test_content_wins_over_thumbnail(self):
        it = item(media("thumbnail", url="https://t"), media("content", url="https://c"))
        assert base_image(it) == "https://c"

    def test_content_without_url_is_ignored(self):
        it = item(media("content", medium="image"), media("thumbnail", url="https://t"))
        assert base_image(it) == "https://t"

    def test_nothing(self):
        assert base_image(item()) is None
        assert base_image(item(media("content"))) is None


def test_quality_upgrade_rewrites_low_res_segment():
    it = item(media("thumbnail", url="https://ichef.bbci.co.uk/ace/standard/240/cpsprodpb/x.jpg"))
    assert quality_upgrade_image(it) == "https://ichef.bbci.co.uk/ace/standard/1024/cpsprodpb/x.jpg"


def test_quality_upgrade_leaves_other_urls_alone():
    it = item(media("content", url="https://img.example.com/480/x.jpg"))
    assert quality_upgrade_image(it) == "https://img.example.com/480/x.jpg"
    assert quality_upgrade_image(item()) is None


class TestBestOfN:
    def test_widest_candidate_wins(self):
        it = item(
            media("thumbnail", url="https://small", width="120"),
            media("thumbnail", url="https://large", width="800"),
        )
        assert best_of_n_image(it) == "https://large"

    def test_height_breaks_width_ties(self):
        it = item(
            media("content", url="https://short", width="800", height="400"),
            media("content", url="https://tall", width="800", height="600"),
        )
        assert best_of_n_image(it) == "https://tall"

    def test_candidates_without_url_are_ignored(self):
        it = item(
            media("thumbnail", width="2000"),
            media("thumbnail", url="https://only", width="10"),
        )
        assert best_of_n_image(it) == "https://only"

    def test_invalid_dimensions_count_as_zero(self):
        it = item(
            media("thumbnail", url="https://bad", width="wide"),
            media("thumbnail", url="https://ok", width="1"),
        )
        assert best_of_n_image(it) == "https://ok"

    def test_is_idempotent(self):
        it = item(media("thumbnail", url="https://a", width="5"), media("content", url="https://b", width="9"))
        assert best_of_n_image(it) == best_of_n_image(it) == "https://b"


class TestMediaGroup:
    def test_base_result_is_kept(self):
        it = item(media("content", url="https://direct"), media("group", [media("content", url="https://g", medium="image")]))
        assert media_group_image(it) == "https://direct"

    def test_first_image_in_group(self):
        group = media("group", [
            media("content", url="https://video", medium="video"),
            media("content", url="https://img1", medium="image"),
            media("content", url="https://img2", medium="image"),
        ])
        assert media_group_image(item(group)) == "https://img1"

    def test_group_without_images(self):
        group = media("group", [media("content", url="https://video", medium="video")])
        assert media_group_image(item(group)) is None


class TestSanitizeSummary:
    def test_strips_markup(self):
        assert sanitize_summary("<p>Hello <b>World</b></p>") == "Hello World"

    def test_truncates_long_text(self):
        out = sanitize_summary("x" * 900)
        assert out == "x" * 800 + "..."
        assert len(out) == 803

    def test_short_text_untouched(self):
        assert sanitize_summary("x" * 800) == "x" * 800
        assert sanitize_summary("") == ""


class TestLookup:
    def test_by_source_name_case_insensitive(self):
        assert strategy_for(source("BBC")).name == "quality_upgrade"
        assert strategy_for(source("cnn")).name == "media_group"
        assert strategy_for(source("ABCNews")).name == "best_of_n"
        assert strategy_for(source("Guardian")).name == "guardian"

    def test_explicit_tag_wins(self):
        assert strategy_for(source("BBC", strategy="default")) is DEFAULT

    def test_unknown_source_gets_default(self):
        assert strategy_for(source("NYTimes")) is DEFAULT

    def test_unknown_tag(self):
        with pytest.raises(ConfigError):
            get_strategy("nope")

    def test_guardian_combines_best_image_and_clean_summary(self):
        s = get_strategy("guardian")
        it = item(media("content", url="https://a", width="140"), media("content", url="https://b", width="460"))
        assert s.extract_image(it) == "https://b"
        assert s.clean_summary("<p>Hi</p>") == "Hi"


class TestWidestContent:
    def test_ignores_thumbnails_and_video(self):
        it = item(
            media("thumbnail", url="https://thumb", width="2000"),
            media("content", url="https://video", medium="video", width="1920"),
            media("content", url="https://img", medium="image", width="460"),
            media("content", url="https://plain", width="140"),
        )
        assert widest_content_image(it) == "https://img"

    def test_unset_medium_counts_as_image(self):
        it = item(media("content", url="https://a", width="140"), media("content", url="https://b", width="1000"))
        assert widest_content_image(it) == "https://b"

    def test_no_usable_content(self):
        assert widest_content_image(item(media("thumbnail", url="https://t"))) is None

    def test_guardian_uses_it(self):
        assert get_strategy("guardian").image_extractor is widest_content_image
