"""
Page Fetcher - turns one URL into PageFields.

The scheduler depends only on the PageFetcher protocol. HttpPageFetcher is
the default implementation: plain HTTP via httpx, extraction via
BeautifulSoup + lxml. No JavaScript rendering.

HTTP status codes are data. Only transport failures (DNS, connect, read
timeout, too many redirects) raise FetchFailure.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import httpx
import structlog
from bs4 import BeautifulSoup

from crawlaudit.core.config import get_settings
from crawlaudit.core.errors import FetchFailure, InvalidURLError
from crawlaudit.engines.base import HreflangLink, PageFields
from crawlaudit.engines.urls import URLCanonicalizer

logger = structlog.get_logger(__name__)

MAX_SCHEMA_DEPTH = 4


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> PageFields:
        ...


# ─────────────────────────────────────────────
# Extraction helpers
# ─────────────────────────────────────────────

def normalize_schema_type(value: Any) -> str:
    """'http://schema.org/Product' -> 'Product'."""
    text = str(value or "")
    if "/" in text:
        return text.rsplit("/", 1)[-1] or text
    if "#" in text:
        return text.rsplit("#", 1)[-1] or text
    return text


def _collect_schema_types(node: Any, types: list[str], depth: int) -> None:
    """Collect @type values from a JSON-LD item and its @graph, bounded by depth."""
    if depth > MAX_SCHEMA_DEPTH or node is None:
        return
    if isinstance(node, list):
        for item in node:
            _collect_schema_types(item, types, depth + 1)
        return
    if not isinstance(node, dict):
        return

    raw_type = node.get("@type")
    for value in raw_type if isinstance(raw_type, list) else [raw_type]:
        name = normalize_schema_type(value)
        if name and name not in types:
            types.append(name)

    graph = node.get("@graph")
    if graph is not None:
        _collect_schema_types(graph, types, depth + 1)


def extract_schema_types(soup: BeautifulSoup) -> list[str]:
    types: list[str] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (ValueError, TypeError):
            continue  # Invalid JSON-LD blocks are ignored
        _collect_schema_types(data, types, depth=0)

    for element in soup.find_all(attrs={"itemscope": True, "itemtype": True}):
        name = normalize_schema_type(element.get("itemtype"))
        if name and name not in types:
            types.append(name)
    return types


def _meta_content(soup: BeautifulSoup, name: str) -> str:
    for tag in soup.find_all("meta"):
        if (tag.get("name") or "").strip().lower() == name:
            return (tag.get("content") or "").strip()
    return ""


def _has_rel(tag: Any, value: str) -> bool:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return value in [r.lower() for r in rel]


def extract_internal_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    """Same-origin links, canonicalized and de-duplicated in document order."""
    origin = URLCanonicalizer.origin_of(base_url)
    links: list[str] = []
    seen: set[str] = set()
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith(("#", "javascript:")):
            continue
        url = URLCanonicalizer.safe_canonicalize(href, base_url)
        if url is None or not URLCanonicalizer.is_same_origin(url, origin):
            continue
        if url not in seen:
            seen.add(url)
            links.append(url)
    return links


def extract_hreflang(soup: BeautifulSoup, base_url: str) -> list[HreflangLink]:
    entries: list[HreflangLink] = []
    for link in soup.find_all("link", hreflang=True):
        if not _has_rel(link, "alternate"):
            continue
        href = (link.get("href") or "").strip()
        if not href:
            continue
        resolved = URLCanonicalizer.safe_canonicalize(href, base_url) or href
        entries.append(HreflangLink(lang=link.get("hreflang") or "", href=resolved))
    return entries


def extract_canonical(soup: BeautifulSoup, base_url: str) -> str:
    for link in soup.find_all("link", href=True):
        if not _has_rel(link, "canonical"):
            continue
        href = link["href"].strip()
        if not href:
            return ""
        try:
            return URLCanonicalizer.canonicalize(href, base_url)
        except InvalidURLError:
            return href
    return ""


def body_word_count(soup: BeautifulSoup) -> int:
    body = soup.body or soup
    for tag in body(["script", "style", "noscript", "template"]):
        tag.decompose()
    return len(body.get_text(separator=" ").split())


def extract_page_fields(
    html: str,
    final_url: str,
    status: int,
    content_type: str = "",
    content_length: int = 0,
    x_robots_tag: str = "",
) -> PageFields:
    """Parse an HTML document into the PageFields shape."""
    soup = BeautifulSoup(html or "", "lxml")

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    description = _meta_content(soup, "description")
    meta_robots = _meta_content(soup, "robots").lower()
    noindex = "noindex" in meta_robots or "noindex" in x_robots_tag.lower()

    fields = PageFields(
        final_url=final_url,
        status=status,
        title=title,
        description_length=len(description),
        h1_count=len(soup.find_all("h1")),
        canonical=extract_canonical(soup, final_url),
        meta_robots=meta_robots,
        googlebot_meta=_meta_content(soup, "googlebot").lower(),
        bingbot_meta=_meta_content(soup, "bingbot").lower(),
        x_robots_tag=x_robots_tag,
        noindex=noindex,
        schema_types=extract_schema_types(soup),
        hreflang=extract_hreflang(soup, final_url),
        internal_links=extract_internal_links(soup, final_url),
        content_length=content_length or len(html or ""),
        content_type=content_type,
    )
    # Word count last: it strips script/style from the tree
    return fields.model_copy(update={"word_count": body_word_count(soup)})


# ─────────────────────────────────────────────
# HTTP implementation
# ─────────────────────────────────────────────

class HttpPageFetcher:
    """Fetches pages over plain HTTP using a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, timeout: float | None = None):
        self.client = client
        self.timeout = timeout or get_settings().CRAWLER_REQUEST_TIMEOUT

    async def fetch(self, url: str) -> PageFields:
        try:
            response = await self.client.get(url, follow_redirects=True, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise FetchFailure(f"Timed out after {self.timeout}s", url=url) from e
        except httpx.TooManyRedirects as e:
            raise FetchFailure("Too many redirects", url=url) from e
        except httpx.HTTPError as e:
            raise FetchFailure(f"{e.__class__.__name__}: {e}", url=url) from e

        content_type = response.headers.get("content-type", "")
        header_length = response.headers.get("content-length")
        try:
            content_length = int(header_length) if header_length else len(response.content)
        except ValueError:
            content_length = len(response.content)

        final_url = URLCanonicalizer.safe_canonicalize(str(response.url)) or url
        x_robots_tag = response.headers.get("x-robots-tag", "")

        if content_type and "html" not in content_type.lower():
            logger.debug("Non-HTML response", url=url, content_type=content_type)
            return PageFields(
                final_url=final_url,
                status=response.status_code,
                x_robots_tag=x_robots_tag,
                noindex="noindex" in x_robots_tag.lower(),
                content_length=content_length,
                content_type=content_type,
            )

        return extract_page_fields(
            response.text,
            final_url=final_url,
            status=response.status_code,
            content_type=content_type,
            content_length=content_length,
            x_robots_tag=x_robots_tag,
        )
