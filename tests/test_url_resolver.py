"""Tests for URL resolution and referer annotations."""

import pytest

from m3u8_proxy.url_resolver import (
    BaseUrl,
    attach_referer,
    is_absolute_http_url,
    origin_of,
    resolve,
    split_referer,
)

BASE = BaseUrl(scheme="https", host="cdn.example.com", path="/live/chan1/")


class TestResolve:
    """Test suite for resolving playlist references."""

    @pytest.mark.parametrize(
        "reference,expected",
        [
            ("seg1.ts", "https://cdn.example.com/live/chan1/seg1.ts"),
            ("/abs/seg2.ts", "https://cdn.example.com/abs/seg2.ts"),
            ("//other.cdn.com/seg3.ts", "https://other.cdn.com/seg3.ts"),
            ("https://full.example.com/seg4.ts", "https://full.example.com/seg4.ts"),
            ("http://plain.example.com/seg5.ts", "http://plain.example.com/seg5.ts"),
            ("HTTPS://upper.example.com/seg6.ts", "HTTPS://upper.example.com/seg6.ts"),
            ("720p/index.m3u8?t=abc", "https://cdn.example.com/live/chan1/720p/index.m3u8?t=abc"),
        ],
    )
    def test_resolution_table(self, reference, expected):
        """Test every reference form against a directory base."""
        assert resolve(reference, BASE) == expected

    def test_relative_to_playlist_file(self):
        """Test that the base path is truncated after its last slash."""
        base = BaseUrl.from_url("https://cdn.example.com/live/chan1/index.m3u8?token=abc")

        assert resolve("seg1.ts", base) == "https://cdn.example.com/live/chan1/seg1.ts"
        assert resolve("/root.ts", base) == "https://cdn.example.com/root.ts"

    def test_scheme_relative_uses_base_scheme(self):
        """Test that scheme-relative references keep the playlist's scheme."""
        base = BaseUrl.from_url("http://cdn.example.com/a/b.m3u8")

        assert resolve("//other.cdn.com/seg.ts", base) == "http://other.cdn.com/seg.ts"

    def test_base_without_path(self):
        """Test a playlist served from the bare host."""
        base = BaseUrl.from_url("https://cdn.example.com")

        assert resolve("seg.ts", base) == "https://cdn.example.com/seg.ts"

    def test_base_keeps_port(self):
        """Test that non-default ports survive resolution."""
        base = BaseUrl.from_url("https://cdn.example.com:8443/hls/master.m3u8")

        assert resolve("seg.ts", base) == "https://cdn.example.com:8443/hls/seg.ts"


class TestBaseUrl:
    """Test suite for BaseUrl."""

    def test_from_url(self):
        """Test that query and fragment are dropped."""
        base = BaseUrl.from_url("https://cdn.example.com/live/x.m3u8?a=1#frag")

        assert base == BaseUrl(scheme="https", host="cdn.example.com", path="/live/x.m3u8")
        assert base.origin == "https://cdn.example.com"
        assert base.directory == "/live/"


class TestRefererAnnotation:
    """Test suite for carrying the referer across proxy hops."""

    def test_attach_without_query(self):
        """Test attaching to a URL without a query string."""
        assert (
            attach_referer("https://cdn.example.com/seg.ts", "https://site.test/")
            == "https://cdn.example.com/seg.ts?__referer=https%3A%2F%2Fsite.test%2F"
        )

    def test_attach_with_query(self):
        """Test attaching to a URL that already has parameters."""
        assert (
            attach_referer("https://cdn.example.com/seg.ts?t=1", "https://site.test/")
            == "https://cdn.example.com/seg.ts?t=1&__referer=https%3A%2F%2Fsite.test%2F"
        )

    def test_attach_without_referer(self):
        """Test that a missing referer leaves the URL alone."""
        assert attach_referer("https://cdn.example.com/seg.ts", None) == "https://cdn.example.com/seg.ts"
        assert attach_referer("https://cdn.example.com/seg.ts", "") == "https://cdn.example.com/seg.ts"

    def test_split_round_trip(self):
        """Test that split recovers the referer and the original URL."""
        original = "https://cdn.example.com/seg.ts?t=1"
        annotated = attach_referer(original, "https://site.test/watch?id=7")

        assert split_referer(annotated) == (original, "https://site.test/watch?id=7")

    def test_split_keeps_other_params_verbatim(self):
        """Test that signed upstream parameters are not re-encoded."""
        url = "https://cdn.example.com/seg.ts?sig=a%2Bb%3D&__referer=https%3A%2F%2Fsite.test%2F&exp=9"

        fetch_url, referer = split_referer(url)

        assert fetch_url == "https://cdn.example.com/seg.ts?sig=a%2Bb%3D&exp=9"
        assert referer == "https://site.test/"

    def test_split_without_annotation(self):
        """Test URLs that carry no referer."""
        assert split_referer("https://cdn.example.com/seg.ts") == ("https://cdn.example.com/seg.ts", None)
        assert split_referer("https://cdn.example.com/seg.ts?a=1") == ("https://cdn.example.com/seg.ts?a=1", None)

    def test_split_only_param(self):
        """Test that the question mark disappears with the last parameter."""
        fetch_url, referer = split_referer("https://cdn.example.com/seg.ts?__referer=https%3A%2F%2Fsite.test")

        assert fetch_url == "https://cdn.example.com/seg.ts"
        assert referer == "https://site.test"


class TestHelpers:
    """Test suite for small URL helpers."""

    def test_origin_of(self):
        """Test origin extraction."""
        assert origin_of("https://cdn.example.com:8443/a/b.ts?x=1") == "https://cdn.example.com:8443"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://cdn.example.com/a.m3u8", True),
            ("http://cdn.example.com", True),
            ("ftp://cdn.example.com/a.m3u8", False),
            ("/relative/a.m3u8", False),
            ("https://", False),
            ("javascript:alert(1)", False),
        ],
    )
    def test_is_absolute_http_url(self, url, expected):
        """Test the absolute-URL guard."""
        assert is_absolute_http_url(url) is expected
