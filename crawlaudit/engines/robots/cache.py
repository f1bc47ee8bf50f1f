"""
robots.txt loading with an explicit TTL cache.

The cache is keyed by nothing but the site origin and owned by whoever
drives the crawl. Expiry is decided by an injected clock so tests can
move time forward without sleeping.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Literal

import httpx
import structlog
from pydantic import BaseModel, Field

from crawlaudit.core.config import get_settings
from crawlaudit.engines.base import RobotsRuleGroup
from crawlaudit.engines.robots.engine import extract_sitemaps, parse_robots

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class RobotsInfo(BaseModel):
    """Parsed robots.txt for one origin, as cached."""
    origin: str
    status: Literal["ok", "error", "unknown"] = "unknown"
    error: str = ""
    text: str = ""
    groups: list[RobotsRuleGroup] = Field(default_factory=list)
    sitemaps: list[str] = Field(default_factory=list)
    fetched_at: float = 0.0


class RobotsCache:
    """Time-to-live cache of RobotsInfo keyed by origin."""

    def __init__(self, ttl_seconds: float | None = None, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().ROBOTS_CACHE_TTL_SECONDS
        self.clock = clock
        self._entries: dict[str, RobotsInfo] = {}

    def get(self, origin: str) -> RobotsInfo | None:
        entry = self._entries.get(origin)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at >= self.ttl_seconds:
            del self._entries[origin]
            return None
        return entry

    def put(self, info: RobotsInfo) -> RobotsInfo:
        stamped = info.model_copy(update={"fetched_at": self.clock()})
        self._entries[info.origin] = stamped
        return stamped

    def invalidate(self, origin: str) -> None:
        self._entries.pop(origin, None)

    def __len__(self) -> int:
        return len(self._entries)


class RobotsLoader:
    """Fetch and parse origin/robots.txt through the cache."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: RobotsCache | None = None,
        timeout: float | None = None,
        max_bytes: int | None = None,
    ):
        settings = get_settings()
        self.client = client
        self.cache = cache or RobotsCache()
        self.timeout = timeout or settings.ROBOTS_FETCH_TIMEOUT
        self.max_bytes = max_bytes or settings.ROBOTS_MAX_BYTES

    async def load(self, origin: str) -> RobotsInfo:
        cached = self.cache.get(origin)
        if cached is not None:
            logger.debug("robots.txt cache hit", origin=origin)
            return cached

        robots_url = f"{origin}/robots.txt"
        try:
            response = await self.client.get(robots_url, timeout=self.timeout)
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}",
                    request=response.request,
                    response=response,
                )
            text = response.text[: self.max_bytes]
            info = RobotsInfo(
                origin=origin,
                status="ok",
                text=text,
                groups=parse_robots(text),
                sitemaps=extract_sitemaps(text),
            )
            logger.info("robots.txt loaded", origin=origin, groups=len(info.groups), sitemaps=len(info.sitemaps))
        except httpx.HTTPError as e:
            # No usable robots.txt means no restrictions
            logger.info("robots.txt unavailable", origin=origin, error=str(e) or e.__class__.__name__)
            info = RobotsInfo(origin=origin, status="error", error=str(e) or e.__class__.__name__)

        return self.cache.put(info)
