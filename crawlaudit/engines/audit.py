"""
Site Auditor - runs one full crawl audit for an origin.

Pipeline:
1. robots.txt (cached per origin)
2. Sitemap discovery
3. Budgeted crawl from the audited page
4. Aggregation, template clusters, alerts
5. Snapshot history + cluster diffs
6. AI crawler visibility for the audited page

execute() never raises: unexpected failures come back as a failed report.
"""

from __future__ import annotations

import asyncio
import time
from typing import Literal

import httpx
import structlog
from pydantic import BaseModel, Field

from crawlaudit.core.config import get_settings
from crawlaudit.core.errors import InvalidURLError, SnapshotUnavailableError
from crawlaudit.core.logging import crawl_context
from crawlaudit.engines.aggregator.engine import CrawlAggregate, ResultAggregator
from crawlaudit.engines.base import (
    AIAgentVerdict,
    Cluster,
    ClusterDelta,
    CrawlBudget,
    Diagnostic,
    DiagnosticKind,
    PageRecord,
    PageSource,
)
from crawlaudit.engines.clustering.engine import cluster_alerts, cluster_templates, diff_cluster_history
from crawlaudit.engines.clustering.snapshots import InMemorySnapshotStore, SnapshotStore, record
from crawlaudit.engines.crawler.engine import CrawlScheduler
from crawlaudit.engines.crawler.fetcher import HttpPageFetcher, PageFetcher
from crawlaudit.engines.crawler.sitemap import SitemapIngester, http_text_fetcher
from crawlaudit.engines.robots.cache import RobotsCache, RobotsInfo, RobotsLoader
from crawlaudit.engines.robots.engine import RobotsMatcher, ai_visibility
from crawlaudit.engines.urls import URLCanonicalizer

logger = structlog.get_logger(__name__)


class AuditRequest(BaseModel):
    url: str
    max_pages: int = 20
    seed_links: list[str] = Field(default_factory=list)
    concurrency: int = 1


class CrawlReport(BaseModel):
    url: str
    run_id: str = ""
    origin: str = ""
    status: Literal["completed", "failed"] = "completed"
    error_message: str = ""
    pages: list[PageRecord] = Field(default_factory=list)
    aggregate: CrawlAggregate | None = None
    clusters: list[Cluster] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    cluster_diffs: list[ClusterDelta] = Field(default_factory=list)
    ai_visibility: list[AIAgentVerdict] = Field(default_factory=list)
    sitemap_urls: int = 0
    sitemap_sources: list[str] = Field(default_factory=list)
    robots_status: str = "unknown"
    source_tally: dict[PageSource, int] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    cancelled: bool = False
    execution_time_ms: float = 0.0


class SiteAuditor:
    """
    Owns the long-lived collaborators of an audit: robots cache and
    snapshot store survive across runs, the HTTP client does not need to.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        robots_cache: RobotsCache | None = None,
        snapshot_store: SnapshotStore | None = None,
        fetcher: PageFetcher | None = None,
        aggregator: ResultAggregator | None = None,
    ):
        self.settings = get_settings()
        self.client = client
        self.robots_cache = robots_cache or RobotsCache()
        self.snapshot_store = snapshot_store or InMemorySnapshotStore()
        self.fetcher = fetcher
        self.aggregator = aggregator or ResultAggregator()
        self.logger = logger.bind(component="site_auditor")

    async def execute(self, request: AuditRequest, cancel: asyncio.Event | None = None) -> CrawlReport:
        """Run the audit with its run_id, URL and origin bound to every log line."""
        seed_url = URLCanonicalizer.safe_canonicalize(request.url)
        origin = URLCanonicalizer.origin_of(seed_url) if seed_url else ""
        with crawl_context(request.url, origin=origin) as run_id:
            report = await self._execute(request, cancel)
        report.run_id = run_id
        return report

    async def _execute(self, request: AuditRequest, cancel: asyncio.Event | None = None) -> CrawlReport:
        """Wrapper around run() that adds timing, logging, and error handling."""
        start = time.perf_counter()
        self.logger.info("Audit starting", max_pages=request.max_pages)

        try:
            if self.client is not None:
                report = await self.run(request, self.client, cancel)
            else:
                async with httpx.AsyncClient(
                    headers={"User-Agent": self.settings.CRAWLER_USER_AGENT},
                ) as client:
                    report = await self.run(request, client, cancel)
            elapsed = (time.perf_counter() - start) * 1000
            report.execution_time_ms = elapsed
            self.logger.info(
                "Audit complete",
                pages=len(report.pages),
                alerts=len(report.alerts),
                diagnostics=len(report.diagnostics),
                elapsed_ms=round(elapsed, 2),
            )
            return report

        except InvalidURLError as exc:
            elapsed = (time.perf_counter() - start) * 1000
            self.logger.warning("Audit rejected", error=exc.message)
            return CrawlReport(
                url=request.url,
                status="failed",
                error_message=exc.message,
                diagnostics=[Diagnostic(kind=DiagnosticKind.INVALID_URL, message=exc.message, url=request.url)],
                execution_time_ms=elapsed,
            )

        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            self.logger.error(
                "Audit failed",
                error=str(exc),
                elapsed_ms=round(elapsed, 2),
                exc_info=True,
            )
            return CrawlReport(
                url=request.url,
                status="failed",
                error_message=str(exc),
                diagnostics=[Diagnostic(kind=DiagnosticKind.ENGINE_FAILED, message=str(exc), url=request.url)],
                execution_time_ms=elapsed,
            )

    async def run(
        self,
        request: AuditRequest,
        client: httpx.AsyncClient,
        cancel: asyncio.Event | None = None,
    ) -> CrawlReport:
        seed_url = URLCanonicalizer.canonicalize(request.url)
        origin = URLCanonicalizer.origin_of(seed_url)
        budget = CrawlBudget(
            max_pages=self.settings.clamp_pages(request.max_pages),
            max_depth=self.settings.CRAWLER_MAX_DEPTH,
        )
        diagnostics: list[Diagnostic] = []

        robots = await RobotsLoader(client, self.robots_cache).load(origin)
        if robots.status == "error":
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.ROBOTS_UNAVAILABLE,
                message=f"robots.txt unavailable: {robots.error}",
                url=f"{origin}/robots.txt",
            ))

        sitemap = await SitemapIngester().ingest(origin, robots.text, http_text_fetcher(client))
        diagnostics.extend(sitemap.diagnostics)

        scheduler = CrawlScheduler(
            origin,
            self.fetcher or HttpPageFetcher(client),
            budget,
            concurrency=request.concurrency,
        )
        crawl = await scheduler.run(seed_url, sitemap.urls, request.seed_links, cancel=cancel)
        diagnostics.extend(crawl.diagnostics)

        aggregate = self.aggregator.aggregate(crawl.pages, budget.max_depth, crawl.source_tally)
        clusters = cluster_templates(crawl.pages, limit=self.settings.CLUSTER_LIMIT)
        alerts = cluster_alerts(clusters, threshold=self.settings.CLUSTER_ALERT_THRESHOLD)

        try:
            history = await record(origin, clusters, self.snapshot_store)
            cluster_diffs = diff_cluster_history(history)
        except SnapshotUnavailableError as e:
            self.logger.warning("Snapshot history unavailable", origin=origin, error=e.message)
            diagnostics.append(Diagnostic(kind=DiagnosticKind.SNAPSHOT_UNAVAILABLE, message=e.message, url=origin))
            cluster_diffs = []

        matcher = RobotsMatcher()
        visibility = self._ai_visibility(seed_url, crawl.pages, robots, matcher)
        for pattern in sorted(matcher.skipped_patterns):
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.MALFORMED_ROBOTS_PATTERN,
                message=f"Skipped robots.txt pattern: {pattern[:80]}",
                url=f"{origin}/robots.txt",
            ))

        return CrawlReport(
            url=seed_url,
            origin=origin,
            pages=crawl.pages,
            aggregate=aggregate,
            clusters=clusters,
            alerts=alerts,
            cluster_diffs=cluster_diffs,
            ai_visibility=visibility,
            sitemap_urls=len(sitemap.urls),
            sitemap_sources=sitemap.sources,
            robots_status=robots.status,
            source_tally=crawl.source_tally,
            diagnostics=diagnostics,
            cancelled=crawl.cancelled,
        )

    @staticmethod
    def _ai_visibility(
        seed_url: str,
        pages: list[PageRecord],
        robots: RobotsInfo,
        matcher: RobotsMatcher,
    ) -> list[AIAgentVerdict]:
        seed_key = URLCanonicalizer.compare_key(seed_url)
        seed_page = next((p for p in pages if URLCanonicalizer.compare_key(p.url) == seed_key), None)
        meta = {
            "robots": seed_page.meta_robots if seed_page else "",
            "googlebot": seed_page.googlebot_meta if seed_page else "",
            "bingbot": seed_page.bingbot_meta if seed_page else "",
        }
        return ai_visibility(robots.groups, meta, path=URLCanonicalizer.request_path(seed_url), matcher=matcher)
