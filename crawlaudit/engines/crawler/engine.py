"""
Crawl Scheduler - budgeted, priority-ordered site traversal.

Flow:
1. Seed the frontier: audited page, its known internal links, sitemap URLs
2. Loop: dequeue → skip if visited → mark visited → fetch → build PageRecord
3. After each page, spend the remaining link budget on shallow same-origin links
4. Stop when the frontier is empty, the page budget is met, or the run is cancelled

Invariants:
- Each canonical URL is fetched at most once per run (visited check-and-set)
- Never more than budget.max_pages records
- A failed fetch still produces a record (status ERR), so counts stay honest
"""

from __future__ import annotations

import asyncio
import time

import structlog

from crawlaudit.core.config import get_settings
from crawlaudit.core.errors import FetchFailure, InvalidURLError
from crawlaudit.engines.base import (
    ERR,
    CrawlBudget,
    CrawlRunResult,
    Diagnostic,
    DiagnosticKind,
    PageFields,
    PageRecord,
    PageSource,
    QueueEntry,
)
from crawlaudit.engines.crawler.fetcher import PageFetcher
from crawlaudit.engines.crawler.frontier import Frontier
from crawlaudit.engines.urls import URLCanonicalizer

logger = structlog.get_logger(__name__)


class CrawlScheduler:
    """
    Owns the frontier, the visited/queued sets and the page budget for one run.

    With concurrency == 1 the frontier is drained strictly sequentially.
    With concurrency > 1 a batch of distinct entries is claimed (visited is
    updated before any await), fetched concurrently, then processed in
    dequeue order so link-budget accounting sees a consistent snapshot.
    """

    def __init__(
        self,
        origin: str,
        fetcher: PageFetcher,
        budget: CrawlBudget,
        concurrency: int = 1,
        fetch_timeout: float | None = None,
    ):
        settings = get_settings()
        self.origin = URLCanonicalizer.origin_of(origin)
        self.fetcher = fetcher
        self.budget = budget
        self.concurrency = max(1, min(concurrency, settings.CRAWLER_MAX_CONCURRENCY))
        self.fetch_timeout = fetch_timeout or settings.CRAWLER_REQUEST_TIMEOUT

        self.frontier = Frontier()
        self.visited: set[str] = set()
        self.sitemap_keys: set[str] = set()
        self.result = CrawlRunResult()
        self.log = logger.bind(origin=self.origin, max_pages=budget.max_pages)

    # ─────────────────────────────────────────
    # Queue management
    # ─────────────────────────────────────────

    def enqueue(self, url: str, source: PageSource, discovered_from: str = "", depth: int = 0) -> bool:
        """Queue a same-origin URL within the depth limit that was never seen before."""
        try:
            normalized = URLCanonicalizer.canonicalize(url, self.origin)
        except InvalidURLError as e:
            self._diagnose(DiagnosticKind.INVALID_URL, e.message, url=str(url))
            return False

        if not URLCanonicalizer.is_same_origin(normalized, self.origin):
            return False
        if depth > self.budget.max_depth:
            return False
        if URLCanonicalizer.compare_key(normalized) in self.visited:
            return False

        return self.frontier.push(QueueEntry(
            url=normalized,
            source=source,
            discovered_from=discovered_from,
            depth=depth,
        ))

    def prioritize_links(self, links: list[str], budget: int, current_depth: int) -> list[str]:
        """Pick up to `budget` unseen same-origin links, shallowest paths first."""
        if budget <= 0 or current_depth + 1 > self.budget.max_depth:
            return []

        unique: list[str] = []
        seen: set[str] = set()
        for link in links:
            normalized = URLCanonicalizer.safe_canonicalize(link, self.origin)
            if normalized is None or not URLCanonicalizer.is_same_origin(normalized, self.origin):
                continue
            if normalized not in seen:
                seen.add(normalized)
                unique.append(normalized)

        # sorted() is stable: equal depths keep document order
        unique.sort(key=URLCanonicalizer.path_depth)

        selected: list[str] = []
        for link in unique:
            if len(selected) >= budget:
                break
            if URLCanonicalizer.compare_key(link) in self.visited or self.frontier.contains(link):
                continue
            selected.append(link)
        return selected

    def seed(self, seed_url: str, sitemap_urls: list[str], seed_links: list[str] | tuple[str, ...] = ()) -> None:
        for url in sitemap_urls:
            try:
                self.sitemap_keys.add(URLCanonicalizer.compare_key(url, self.origin))
            except InvalidURLError:
                continue

        seed = URLCanonicalizer.safe_canonicalize(seed_url, self.origin) or seed_url
        self.enqueue(seed, PageSource.SEED, "", 0)
        for link in list(seed_links)[: self.budget.max_pages]:
            self.enqueue(link, PageSource.SEED, seed, 1)
        for url in sitemap_urls:
            self.enqueue(url, PageSource.SITEMAP, "", 0)

    # ─────────────────────────────────────────
    # Main loop
    # ─────────────────────────────────────────

    async def run(
        self,
        seed_url: str,
        sitemap_urls: list[str] | None = None,
        seed_links: list[str] | tuple[str, ...] = (),
        cancel: asyncio.Event | None = None,
    ) -> CrawlRunResult:
        start = time.perf_counter()
        self.seed(seed_url, sitemap_urls or [], seed_links)
        self.log.info("Crawl starting", queued=len(self.frontier), concurrency=self.concurrency)

        while self.frontier and self._produced < self.budget.max_pages:
            if cancel is not None and cancel.is_set():
                self._cancel()
                break

            batch = self._claim_batch()
            if not batch:
                break

            outcomes = await asyncio.gather(*[self._fetch(entry) for entry in batch])

            for i, (entry, outcome) in enumerate(zip(batch, outcomes)):
                self._record(entry, outcome, pending=len(batch) - i - 1)

            if cancel is not None and cancel.is_set():
                self._cancel()
                break

        self.result.visited = set(self.visited)
        self.log.info(
            "Crawl complete",
            pages=self._produced,
            errors=len([p for p in self.result.pages if p.is_error]),
            remaining=len(self.frontier),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return self.result

    @property
    def _produced(self) -> int:
        return len(self.result.pages)

    def _claim_batch(self) -> list[QueueEntry]:
        """Dequeue up to `concurrency` unvisited entries, marking each visited."""
        size = min(self.concurrency, self.budget.max_pages - self._produced)
        batch: list[QueueEntry] = []
        while self.frontier and len(batch) < size:
            entry = self.frontier.pop()
            key = URLCanonicalizer.compare_key(entry.url)
            if key in self.visited:
                continue
            self.visited.add(key)
            batch.append(entry)
        return batch

    async def _fetch(self, entry: QueueEntry) -> PageFields | FetchFailure:
        try:
            return await asyncio.wait_for(self.fetcher.fetch(entry.url), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            return FetchFailure(f"Timed out after {self.fetch_timeout}s", url=entry.url)
        except FetchFailure as e:
            return e
        except Exception as e:
            # Extraction bugs must not abort the run; the page is recorded as ERR
            self.log.error("Unexpected fetch error", url=entry.url, error=str(e), exc_info=True)
            return FetchFailure(f"{e.__class__.__name__}: {e}", url=entry.url)

    def _record(self, entry: QueueEntry, outcome: PageFields | FetchFailure, pending: int = 0) -> None:
        """Append the page and enqueue its links. `pending` counts batch entries claimed but not yet recorded."""
        in_sitemap = URLCanonicalizer.compare_key(entry.url) in self.sitemap_keys

        if isinstance(outcome, FetchFailure):
            self.log.warning("Page fetch failed", url=entry.url, error=outcome.message)
            self._diagnose(DiagnosticKind.FETCH_FAILURE, f"{entry.url}: {outcome.message}", url=entry.url)
            page = PageRecord(
                url=entry.url,
                final_url=entry.url,
                status=ERR,
                depth=entry.depth,
                path_depth=URLCanonicalizer.path_depth(entry.url),
                source=entry.source,
                discovered_from=entry.discovered_from,
                in_sitemap=in_sitemap,
                error=outcome.message,
            )
            self._append(page)
            return

        page = PageRecord(
            url=entry.url,
            final_url=outcome.final_url or entry.url,
            status=outcome.status,
            title=outcome.title,
            description_length=outcome.description_length,
            h1_count=outcome.h1_count,
            word_count=outcome.word_count,
            canonical=outcome.canonical,
            meta_robots=outcome.meta_robots,
            googlebot_meta=outcome.googlebot_meta,
            bingbot_meta=outcome.bingbot_meta,
            noindex=outcome.noindex,
            schema_types=outcome.schema_types,
            hreflang=outcome.hreflang,
            internal_links=outcome.internal_links,
            depth=entry.depth,
            path_depth=URLCanonicalizer.path_depth(entry.url),
            source=entry.source,
            discovered_from=entry.discovered_from,
            in_sitemap=in_sitemap,
            content_length=outcome.content_length,
            content_type=outcome.content_type,
        )
        self._append(page)

        link_budget = self.budget.max_pages - self._produced - len(self.frontier) - pending
        if link_budget > 0 and page.internal_links:
            for link in self.prioritize_links(page.internal_links, link_budget, entry.depth):
                self.enqueue(link, PageSource.DISCOVERED, page.url, entry.depth + 1)

        if self._produced % 10 == 0:
            self.log.info("Crawl progress", crawled=self._produced, queued=len(self.frontier))

    def _append(self, page: PageRecord) -> None:
        self.result.pages.append(page)
        self.result.source_tally[page.source] = self.result.source_tally.get(page.source, 0) + 1

    def _cancel(self) -> None:
        self.result.cancelled = True
        self._diagnose(DiagnosticKind.CANCELLED, f"Crawl cancelled after {self._produced} pages")
        self.log.info("Crawl cancelled", crawled=self._produced)

    def _diagnose(self, kind: DiagnosticKind, message: str, url: str = "") -> None:
        self.result.diagnostics.append(Diagnostic(kind=kind, message=message, url=url))
