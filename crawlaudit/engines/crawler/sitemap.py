"""
Sitemap Ingester

Discovery order:
1. origin/sitemap.xml
2. Sitemap: lines from robots.txt, when (1) yields nothing

Every <loc> is resolved against the origin and kept only when its host
matches the origin host. Unreachable or empty sitemaps are diagnostics,
never errors.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit

import httpx
import structlog
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from crawlaudit.core.config import get_settings
from crawlaudit.core.errors import InvalidURLError, SitemapUnavailableError
from crawlaudit.engines.base import Diagnostic, DiagnosticKind
from crawlaudit.engines.robots.engine import extract_sitemaps
from crawlaudit.engines.urls import URLCanonicalizer

logger = structlog.get_logger(__name__)

TextFetcher = Callable[[str], Awaitable[str]]


class SitemapResult(BaseModel):
    urls: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)


def _soup(xml_text: str) -> BeautifulSoup | None:
    if not xml_text or not xml_text.strip():
        return None
    return BeautifulSoup(xml_text, "xml")


def _loc_values(soup: BeautifulSoup) -> list[str]:
    values = []
    for loc in soup.find_all("loc"):
        href = loc.get_text(strip=True)
        if href:
            values.append(href)
    return values


def parse_sitemap_urls(xml_text: str, origin: str) -> list[str]:
    """Extract same-host page URLs from every <loc> in the document."""
    soup = _soup(xml_text)
    if soup is None:
        return []

    origin_host = URLCanonicalizer.normalize_host(urlsplit(origin).hostname or "")
    urls: list[str] = []
    for href in _loc_values(soup):
        try:
            url = URLCanonicalizer.canonicalize(href, origin)
        except InvalidURLError:
            continue
        if origin_host and URLCanonicalizer.normalize_host(urlsplit(url).hostname or "") != origin_host:
            continue
        urls.append(url)
    return urls


def is_sitemap_index(xml_text: str) -> bool:
    return "<sitemapindex" in (xml_text or "")


def http_text_fetcher(client: httpx.AsyncClient, timeout: float | None = None) -> TextFetcher:
    """Build a fetch_text callable that raises SitemapUnavailableError on any failure."""
    timeout = timeout or get_settings().SITEMAP_FETCH_TIMEOUT

    async def fetch_text(url: str) -> str:
        try:
            response = await client.get(url, timeout=timeout)
        except httpx.HTTPError as e:
            raise SitemapUnavailableError(f"Failed sitemap: {url} ({e.__class__.__name__})", url=url) from e
        if response.status_code >= 400:
            raise SitemapUnavailableError(f"Failed sitemap: {url} (HTTP {response.status_code})", url=url)
        return response.text

    return fetch_text


class SitemapIngester:
    """Pull seed URLs from sitemap XML and robots.txt Sitemap: lines."""

    def __init__(self, max_urls: int | None = None, max_index_depth: int | None = None):
        settings = get_settings()
        self.max_urls = max_urls or settings.SITEMAP_MAX_URLS
        self.max_index_depth = max_index_depth if max_index_depth is not None else settings.SITEMAP_MAX_INDEX_DEPTH

    async def ingest(self, origin: str, robots_text: str, fetch_text: TextFetcher) -> SitemapResult:
        result = SitemapResult()
        seen: set[str] = set()

        default_url = f"{origin}/sitemap.xml"
        await self._collect(default_url, origin, fetch_text, result, seen, depth=0)

        if not result.urls:
            for link in extract_sitemaps(robots_text):
                if len(result.urls) >= self.max_urls:
                    break
                await self._collect(link, origin, fetch_text, result, seen, depth=0)

        logger.info(
            "Sitemap URLs discovered",
            origin=origin,
            count=len(result.urls),
            sources=len(result.sources),
            failures=len(result.diagnostics),
        )
        return result

    async def _collect(
        self,
        sitemap_url: str,
        origin: str,
        fetch_text: TextFetcher,
        result: SitemapResult,
        seen: set[str],
        depth: int,
    ) -> None:
        """Fetch one sitemap; follow index documents while depth allows."""
        try:
            text = await fetch_text(sitemap_url)
        except (SitemapUnavailableError, httpx.HTTPError) as e:
            message = e.message if isinstance(e, SitemapUnavailableError) else f"Failed sitemap: {sitemap_url}"
            logger.debug("Sitemap unavailable", url=sitemap_url, error=str(e))
            result.diagnostics.append(Diagnostic(
                kind=DiagnosticKind.SITEMAP_UNAVAILABLE,
                message=message,
                url=sitemap_url,
            ))
            return

        if is_sitemap_index(text):
            if depth >= self.max_index_depth:
                logger.debug("Sitemap index depth limit reached", url=sitemap_url, depth=depth)
                return
            soup = _soup(text)
            for child in _loc_values(soup) if soup is not None else []:
                if len(result.urls) >= self.max_urls:
                    return
                await self._collect(child, origin, fetch_text, result, seen, depth + 1)
            return

        urls = parse_sitemap_urls(text, origin)
        if not urls:
            result.diagnostics.append(Diagnostic(
                kind=DiagnosticKind.SITEMAP_UNAVAILABLE,
                message=f"No usable <loc> entries in {sitemap_url}",
                url=sitemap_url,
            ))
            return

        result.sources.append(sitemap_url)
        for url in urls:
            if len(result.urls) >= self.max_urls:
                break
            key = URLCanonicalizer.compare_key(url)
            if key in seen:
                continue
            seen.add(key)
            result.urls.append(url)
