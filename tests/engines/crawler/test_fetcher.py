"""
Tests for page field extraction and the HTTP page fetcher.
Uses httpx MockTransport to avoid real network calls.
"""

import httpx
import pytest

from crawlaudit.core.errors import FetchFailure
from crawlaudit.engines.crawler.fetcher import HttpPageFetcher, extract_page_fields, normalize_schema_type

PAGE_HTML = """
<html>
<head>
  <title>Blue Widget 42</title>
  <meta name="description" content="A fine widget">
  <meta name="robots" content="NOINDEX, follow">
  <meta name="googlebot" content="noimageai">
  <link rel="canonical" href="/widgets/blue">
  <link rel="alternate" hreflang="de" href="https://example.com/de/widgets/blue">
  <script type="application/ld+json">
    {"@context": "https://schema.org",
     "@graph": [{"@type": "Product"}, {"@type": ["BreadcrumbList", "Thing"]}]}
  </script>
  <script type="application/ld+json">{not json</script>
</head>
<body>
  <h1>Blue Widget</h1>
  <h1>Again</h1>
  <div itemscope itemtype="https://schema.org/Offer"></div>
  <a href="/a">A</a>
  <a href="/a#reviews">Reviews</a>
  <a href="https://other.com/x">Elsewhere</a>
  <a href="#top">Top</a>
  <a href="mailto:sales@example.com">Mail</a>
</body>
</html>
"""


# ─────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────

class TestExtractPageFields:

    @pytest.fixture
    def fields(self):
        return extract_page_fields(PAGE_HTML, "https://example.com/widgets/blue-42", 200, "text/html")

    def test_basic_fields(self, fields):
        assert fields.title == "Blue Widget 42"
        assert fields.description_length == len("A fine widget")
        assert fields.h1_count == 2
        assert fields.status == 200

    def test_canonical_resolved(self, fields):
        assert fields.canonical == "https://example.com/widgets/blue"

    def test_meta_robots(self, fields):
        assert fields.meta_robots == "noindex, follow"
        assert fields.googlebot_meta == "noimageai"
        assert fields.noindex

    def test_internal_links_deduplicated(self, fields):
        assert fields.internal_links == ["https://example.com/a"]

    def test_hreflang(self, fields):
        assert len(fields.hreflang) == 1
        assert fields.hreflang[0].lang == "de"
        assert fields.hreflang[0].href == "https://example.com/de/widgets/blue"

    def test_schema_types(self, fields):
        assert fields.schema_types == ["Product", "BreadcrumbList", "Thing", "Offer"]

    def test_word_count_ignores_scripts(self):
        html = "<html><body><p>one two three</p><script>var hidden = 'four five';</script></body></html>"
        fields = extract_page_fields(html, "https://example.com/", 200)
        assert fields.word_count == 3

    def test_x_robots_tag_noindex(self):
        fields = extract_page_fields("<html></html>", "https://example.com/", 200, x_robots_tag="noindex")
        assert fields.noindex

    def test_normalize_schema_type(self):
        assert normalize_schema_type("http://schema.org/Product") == "Product"
        assert normalize_schema_type("Article") == "Article"
        assert normalize_schema_type(None) == ""


# ─────────────────────────────────────────────
# HTTP fetcher
# ─────────────────────────────────────────────

class TestHttpPageFetcher:

    @pytest.mark.asyncio
    async def test_error_status_is_data(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(404, html="<html><title>Missing</title></html>")
        )
        async with httpx.AsyncClient(transport=transport) as client:
            fields = await HttpPageFetcher(client, timeout=1.0).fetch("https://example.com/gone")
        assert fields.status == 404
        assert fields.title == "Missing"

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "https://example.com/new"})
            return httpx.Response(200, html="<html><title>New</title></html>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fields = await HttpPageFetcher(client, timeout=1.0).fetch("https://example.com/old")
        assert fields.final_url == "https://example.com/new"
        assert fields.status == 200

    @pytest.mark.asyncio
    async def test_network_error_raises_fetch_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(FetchFailure) as exc_info:
                await HttpPageFetcher(client, timeout=1.0).fetch("https://example.com/")
        assert exc_info.value.url == "https://example.com/"

    @pytest.mark.asyncio
    async def test_non_html_skips_extraction(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(
            200,
            content=b"%PDF-1.4",
            headers={"content-type": "application/pdf", "x-robots-tag": "noindex"},
        ))
        async with httpx.AsyncClient(transport=transport) as client:
            fields = await HttpPageFetcher(client, timeout=1.0).fetch("https://example.com/doc.pdf")
        assert fields.content_type == "application/pdf"
        assert fields.noindex
        assert fields.title == ""
        assert fields.content_length == 8
