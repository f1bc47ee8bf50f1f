"""
Type contracts shared by every crawl audit engine.

Design principles:
- Records are immutable once built: a PageRecord is created once per
  dequeued URL and never mutated afterwards
- Engines exchange plain pydantic models, never live network objects
- Failures travel as Diagnostic entries next to the results, never as
  exceptions past the run boundary
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class PageSource(str, Enum):
    SITEMAP = "sitemap"         # Listed in sitemap.xml or a robots.txt Sitemap:
    SEED = "seed"               # The audited page or its already-known links
    DISCOVERED = "discovered"   # Found in links during the crawl


class DiagnosticKind(str, Enum):
    INVALID_URL = "invalid_url"
    FETCH_FAILURE = "fetch_failure"
    MALFORMED_ROBOTS_PATTERN = "malformed_robots_pattern"
    SITEMAP_UNAVAILABLE = "sitemap_unavailable"
    SNAPSHOT_UNAVAILABLE = "snapshot_unavailable"
    ROBOTS_UNAVAILABLE = "robots_unavailable"
    CANCELLED = "cancelled"
    ENGINE_FAILED = "engine_failed"


ERR = "ERR"
PageStatus = Union[int, Literal["ERR"]]


# ─────────────────────────────────────────────
# Robots types
# ─────────────────────────────────────────────

class RobotsRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["allow", "disallow"]
    pattern: str

    def describe(self) -> str:
        return f"{self.kind.upper()}: {self.pattern or '/'}"


class RobotsRuleGroup(BaseModel):
    """One contiguous User-agent block of a robots.txt file."""
    model_config = ConfigDict(frozen=True)

    agents: list[str] = Field(default_factory=list)   # Lowercased
    rules: list[RobotsRule] = Field(default_factory=list)


class RobotsEvaluation(BaseModel):
    allowed: bool = True
    matched_rule: RobotsRule | None = None
    matched_group: RobotsRuleGroup | None = None


class MetaDirectives(BaseModel):
    """Parsed meta robots content (robots, googlebot, bingbot)."""
    directives: list[str] = Field(default_factory=list)
    noindex: bool = False
    nofollow: bool = False
    noai: bool = False
    noimageai: bool = False
    nosnippet: bool = False
    max_snippet_zero: bool = False


class AIAgent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    user_agent: str


class AIAgentVerdict(BaseModel):
    agent_name: str
    user_agent_token: str
    allowed: bool
    matched_rule: RobotsRule | None = None
    blocked_by_robots: bool = False
    blocked_by_meta: bool = False
    images_allowed: bool = True
    reasons: list[str] = Field(default_factory=list)


# ─────────────────────────────────────────────
# Crawl types
# ─────────────────────────────────────────────

class CrawlBudget(BaseModel):
    """Caller-supplied limits, immutable for the run."""
    model_config = ConfigDict(frozen=True)

    max_pages: int = Field(ge=5, le=50, default=20)
    max_depth: int = Field(ge=0, default=5)


class QueueEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    source: PageSource
    discovered_from: str = ""
    depth: int = 0


class HreflangLink(BaseModel):
    lang: str = ""
    href: str


class PageFields(BaseModel):
    """What the page fetcher hands back for one URL."""
    final_url: str
    status: int
    title: str = ""
    description_length: int = 0
    h1_count: int = 0
    word_count: int = 0
    canonical: str = ""
    meta_robots: str = ""
    googlebot_meta: str = ""
    bingbot_meta: str = ""
    x_robots_tag: str = ""
    noindex: bool = False
    schema_types: list[str] = Field(default_factory=list)
    hreflang: list[HreflangLink] = Field(default_factory=list)
    internal_links: list[str] = Field(default_factory=list)
    content_length: int = 0
    content_type: str = ""


class PageRecord(BaseModel):
    """Result of fetching and extracting one crawled URL."""
    model_config = ConfigDict(frozen=True)

    url: str
    final_url: str = ""
    status: PageStatus = ERR
    title: str = ""
    description_length: int = 0
    h1_count: int = 0
    word_count: int = 0
    canonical: str = ""
    meta_robots: str = ""
    googlebot_meta: str = ""
    bingbot_meta: str = ""
    noindex: bool = False
    schema_types: list[str] = Field(default_factory=list)
    hreflang: list[HreflangLink] = Field(default_factory=list)
    internal_links: list[str] = Field(default_factory=list)
    depth: int = 0
    path_depth: int = 0
    source: PageSource = PageSource.DISCOVERED
    discovered_from: str = ""
    in_sitemap: bool = False
    content_length: int = 0
    content_type: str = ""
    error: str = ""

    @property
    def is_error(self) -> bool:
        return self.status == ERR

    @property
    def status_code(self) -> int | None:
        return self.status if isinstance(self.status, int) else None


class Diagnostic(BaseModel):
    kind: DiagnosticKind
    message: str
    url: str = ""
    at: float = Field(default_factory=time.time)


class CrawlRunResult(BaseModel):
    pages: list[PageRecord] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    source_tally: dict[PageSource, int] = Field(
        default_factory=lambda: {source: 0 for source in PageSource}
    )
    visited: set[str] = Field(default_factory=set)
    cancelled: bool = False


# ─────────────────────────────────────────────
# Aggregate types
# ─────────────────────────────────────────────

class CrawlSummary(BaseModel):
    total_pages: int = 0
    ok_pages: int = 0
    error_pages: int = 0
    redirects: int = 0
    noindex_pages: int = 0
    missing_canonical: int = 0
    off_origin_canonical: int = 0
    non_self_canonical: int = 0
    missing_descriptions: int = 0
    missing_h1: int = 0
    multiple_h1: int = 0
    thin_pages: int = 0
    hreflang_missing_back: int = 0
    indexable: int = 0
    avg_depth: float = 0.0
    max_depth: int = 0
    depth_limit: int = 0
    sources: str = ""


class ClusterSummary(BaseModel):
    """The persisted part of a cluster: what snapshots keep."""
    signature: str
    count: int = 0
    missing_description: int = 0
    missing_h1: int = 0
    thin: int = 0


class Cluster(ClusterSummary):
    sample_url: str = ""
    multiple_h1: int = 0
    missing_description_rate: float = 0.0
    missing_h1_rate: float = 0.0
    thin_rate: float = 0.0


class CrawlSnapshot(BaseModel):
    timestamp: str
    clusters: list[ClusterSummary] = Field(default_factory=list)


class ClusterDelta(BaseModel):
    signature: str
    count_delta: int = 0
    missing_description_delta: int = 0
    missing_h1_delta: int = 0
    thin_delta: int = 0
    missing_description_rate_delta: float = 0.0
    missing_h1_rate_delta: float = 0.0
    thin_rate_delta: float = 0.0
    is_new: bool = False
