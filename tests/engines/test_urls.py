"""
Tests for URL canonicalization.
"""

import pytest

from crawlaudit.core.errors import InvalidURLError
from crawlaudit.engines.urls import URLCanonicalizer


# ─────────────────────────────────────────────
# canonicalize
# ─────────────────────────────────────────────

class TestCanonicalize:

    def test_resolves_relative_url(self):
        result = URLCanonicalizer.canonicalize("/about", "https://example.com/")
        assert result == "https://example.com/about"

    def test_removes_fragment(self):
        result = URLCanonicalizer.canonicalize("https://example.com/page#section")
        assert result == "https://example.com/page"

    def test_strips_trailing_slash(self):
        assert URLCanonicalizer.canonicalize("https://example.com/page/") == "https://example.com/page"

    def test_root_path_preserved(self):
        assert URLCanonicalizer.canonicalize("https://example.com") == "https://example.com/"
        assert URLCanonicalizer.canonicalize("https://example.com/") == "https://example.com/"

    def test_keeps_query(self):
        result = URLCanonicalizer.canonicalize("https://example.com/search?q=shoes#top")
        assert result == "https://example.com/search?q=shoes"

    def test_lowercases_scheme(self):
        assert URLCanonicalizer.canonicalize("HTTPS://example.com/a").startswith("https://")

    def test_lowercases_host(self):
        assert (
            URLCanonicalizer.canonicalize("https://Example.COM/a")
            == URLCanonicalizer.canonicalize("https://example.com/a")
            == "https://example.com/a"
        )

    def test_path_case_preserved(self):
        assert URLCanonicalizer.canonicalize("https://EXAMPLE.com/Path") == "https://example.com/Path"

    @pytest.mark.parametrize("raw,expected", [
        ("http://example.com:80/a", "http://example.com/a"),
        ("https://example.com:443/a", "https://example.com/a"),
        ("https://example.com:80/a", "https://example.com:80/a"),
        ("http://example.com:8080/a", "http://example.com:8080/a"),
    ])
    def test_drops_default_port_only(self, raw, expected):
        assert URLCanonicalizer.canonicalize(raw) == expected

    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "mailto:test@example.com",
        "tel:+123456",
        "javascript:void(0)",
        "ftp://example.com/file",
        "http://[::1",
    ])
    def test_rejects_invalid_input(self, raw):
        with pytest.raises(InvalidURLError):
            URLCanonicalizer.canonicalize(raw)

    def test_relative_without_base_is_invalid(self):
        with pytest.raises(InvalidURLError):
            URLCanonicalizer.canonicalize("/about")

    def test_safe_canonicalize_returns_none(self):
        assert URLCanonicalizer.safe_canonicalize("mailto:a@b.c") is None

    @pytest.mark.parametrize("raw", [
        "https://example.com/a//",
        "https://example.com/a/b/?x=1#f",
        "https://Example.com:8080/Path/",
        "https://example.com",
    ])
    def test_idempotent(self, raw):
        once = URLCanonicalizer.canonicalize(raw)
        assert URLCanonicalizer.canonicalize(once) == once


# ─────────────────────────────────────────────
# compare_key and helpers
# ─────────────────────────────────────────────

class TestCompareKey:

    def test_ignores_www_and_host_case(self):
        assert (
            URLCanonicalizer.compare_key("https://WWW.Example.com/blog")
            == URLCanonicalizer.compare_key("https://example.com/blog")
        )

    def test_collapses_index_documents(self):
        assert URLCanonicalizer.compare_key("https://example.com/blog/index.html") == "example.com/blog"
        assert URLCanonicalizer.compare_key("https://example.com/default.htm") == "example.com/"

    def test_keeps_port_and_query(self):
        assert URLCanonicalizer.compare_key("http://example.com:8080/a?b=1") == "example.com:8080/a?b=1"

    def test_resolves_against_origin(self):
        assert URLCanonicalizer.compare_key("/a/", "https://example.com") == "example.com/a"

    def test_idempotent(self):
        key = URLCanonicalizer.compare_key("https://www.example.com/blog/index.html?p=2")
        assert URLCanonicalizer.compare_key(key) == key


class TestHelpers:

    def test_origin_of_lowercases(self):
        assert URLCanonicalizer.origin_of("HTTPS://Example.com/x") == "https://example.com"

    def test_origin_of_drops_default_port(self):
        assert URLCanonicalizer.origin_of("https://Example.com:443/x") == "https://example.com"
        assert URLCanonicalizer.is_same_origin("https://EXAMPLE.com:443/a", "https://example.com")

    def test_origin_of_rejects_relative(self):
        with pytest.raises(InvalidURLError):
            URLCanonicalizer.origin_of("/relative")

    def test_same_origin(self):
        assert URLCanonicalizer.is_same_origin("https://example.com/a", "https://example.com")
        assert not URLCanonicalizer.is_same_origin("http://example.com/a", "https://example.com")
        assert not URLCanonicalizer.is_same_origin("https://sub.example.com/a", "https://example.com")

    def test_path_depth(self):
        assert URLCanonicalizer.path_depth("https://example.com/") == 0
        assert URLCanonicalizer.path_depth("https://example.com/a/b/c") == 3

    def test_request_path(self):
        assert URLCanonicalizer.request_path("https://example.com/a?b=1") == "/a?b=1"
        assert URLCanonicalizer.request_path("https://example.com") == "/"
