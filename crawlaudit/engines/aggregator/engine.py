"""
Result Aggregator

Turns the flat list of PageRecords from a crawl run into:
- CrawlSummary counters
- Per-page indexability reasons (every blocker, in a fixed order)
- Inbound-link index and orphan candidates
- Supporting breakdowns: depth distribution, sections, duplicates,
  hreflang reciprocity, sitemap coverage, search intent mix, content
  gaps and indexing blockers
"""

from __future__ import annotations

import re
from collections import Counter
from urllib.parse import urlsplit

import structlog
from pydantic import BaseModel, Field

from crawlaudit.core.errors import InvalidURLError
from crawlaudit.engines.base import CrawlSummary, PageRecord, PageSource
from crawlaudit.engines.urls import URLCanonicalizer

logger = structlog.get_logger(__name__)

INDEXABLE = "Indexable"
THIN_WORD_COUNT = 300

# Reason labels, in reporting order
STATUS_ERROR = "Status error"
REDIRECT = "Redirect"
NOINDEX = "Noindex"
MISSING_CANONICAL = "Missing canonical"
CANONICAL_TO_OTHER = "Canonical to other"
NOT_IN_SITEMAP = "Not in sitemap"

# Search intents
TRANSACTIONAL = "Transactional"
COMMERCIAL = "Commercial"
LOCAL = "Local"
INFORMATIONAL = "Informational"

_TRANSACTIONAL_WORDS = re.compile(r"buy|pricing|price|shop|deal|coupon|order")
_COMMERCIAL_WORDS = re.compile(r"review|vs|versus|comparison|best|top")


class ReasonCount(BaseModel):
    reason: str
    count: int


class HreflangIssue(BaseModel):
    source: str
    target: str
    lang: str = ""


class DuplicateGroup(BaseModel):
    value: str
    urls: list[str]


class SectionStats(BaseModel):
    segment: str
    count: int = 0
    missing_description: int = 0
    missing_h1: int = 0
    thin: int = 0


class SitemapStats(BaseModel):
    in_sitemap_count: int = 0
    not_in_sitemap_count: int = 0
    orphan_candidates: list[str] = Field(default_factory=list)
    not_in_sitemap_samples: list[str] = Field(default_factory=list)


class IntentCount(BaseModel):
    intent: str
    count: int


class ContentStats(BaseModel):
    missing_title: int = 0
    missing_description: int = 0
    missing_h1: int = 0
    thin: int = 0
    avg_words: int = 0


class BlockerStats(BaseModel):
    redirects: int = 0
    errors: int = 0
    noindex: int = 0
    canonical_missing: int = 0
    canonical_other: int = 0
    samples: list[str] = Field(default_factory=list)


class CrawlAggregate(BaseModel):
    summary: CrawlSummary
    indexability: list[ReasonCount] = Field(default_factory=list)
    page_reasons: dict[str, list[str]] = Field(default_factory=dict)
    inbound_links: dict[str, int] = Field(default_factory=dict)
    depth_distribution: list[int] = Field(default_factory=list)
    sections: list[SectionStats] = Field(default_factory=list)
    sitemap: SitemapStats = Field(default_factory=SitemapStats)
    duplicate_titles: list[DuplicateGroup] = Field(default_factory=list)
    hreflang_issues: list[HreflangIssue] = Field(default_factory=list)
    intent_mix: list[IntentCount] = Field(default_factory=list)
    content: ContentStats = Field(default_factory=ContentStats)
    blockers: BlockerStats = Field(default_factory=BlockerStats)


# ─────────────────────────────────────────────
# Page-level checks
# ─────────────────────────────────────────────

def _key(url: str) -> str:
    """Canonical identity, falling back to the raw string for unparseable input."""
    return URLCanonicalizer.safe_canonicalize(url) or (url or "")


def landing_url(page: PageRecord) -> str:
    """Where the fetch ended after redirects. Canonicals are judged against this."""
    return page.final_url or page.url


def is_thin(page: PageRecord) -> bool:
    return 0 < page.word_count < THIN_WORD_COUNT


def indexability_reasons(page: PageRecord) -> list[str]:
    """Every reason the page is not indexable, in reporting order. Empty means indexable."""
    reasons: list[str] = []
    status = page.status_code
    if not status or status >= 400:
        reasons.append(STATUS_ERROR)
    if status is not None and 300 <= status < 400:
        reasons.append(REDIRECT)
    if page.noindex:
        reasons.append(NOINDEX)
    if not page.canonical:
        reasons.append(MISSING_CANONICAL)
    elif _key(page.canonical) != _key(landing_url(page)):
        reasons.append(CANONICAL_TO_OTHER)
    if not page.in_sitemap:
        reasons.append(NOT_IN_SITEMAP)
    return reasons


def is_indexable(page: PageRecord) -> bool:
    return not indexability_reasons(page)


def indexability_label(page: PageRecord) -> str:
    reasons = indexability_reasons(page)
    return ", ".join(reasons) if reasons else INDEXABLE


def indexability_breakdown(pages: list[PageRecord]) -> list[ReasonCount]:
    """Reason → page count, most common first."""
    counts: Counter[str] = Counter()
    for page in pages:
        reasons = indexability_reasons(page) or [INDEXABLE]
        counts.update(reasons)
    return [ReasonCount(reason=r, count=c) for r, c in counts.most_common()]


# ─────────────────────────────────────────────
# Site-level aggregates
# ─────────────────────────────────────────────

def summarize(pages: list[PageRecord], depth_limit: int = 0) -> CrawlSummary:
    summary = CrawlSummary(total_pages=len(pages), depth_limit=depth_limit)
    depth_total = 0

    for page in pages:
        status = page.status_code
        if status is not None and 200 <= status < 300:
            summary.ok_pages += 1
        if status is not None and 300 <= status < 400:
            summary.redirects += 1
        if status is None or status >= 400:
            summary.error_pages += 1
        if page.description_length == 0:
            summary.missing_descriptions += 1
        if page.h1_count == 0:
            summary.missing_h1 += 1
        if page.h1_count > 1:
            summary.multiple_h1 += 1
        if is_thin(page):
            summary.thin_pages += 1
        if page.noindex:
            summary.noindex_pages += 1

        if not page.canonical:
            summary.missing_canonical += 1
        else:
            try:
                if URLCanonicalizer.origin_of(page.canonical) != URLCanonicalizer.origin_of(landing_url(page)):
                    summary.off_origin_canonical += 1
            except InvalidURLError:
                summary.off_origin_canonical += 1
            if _key(page.canonical) != _key(landing_url(page)):
                summary.non_self_canonical += 1

        depth_total += page.depth
        summary.max_depth = max(summary.max_depth, page.depth)
        if is_indexable(page):
            summary.indexable += 1

    summary.avg_depth = round(depth_total / len(pages), 1) if pages else 0.0
    return summary


def inbound_links(pages: list[PageRecord]) -> dict[str, int]:
    """Count internal links pointing at each crawled page."""
    inbound = {_key(page.url): 0 for page in pages}
    for page in pages:
        for link in page.internal_links:
            target = _key(link)
            if target in inbound:
                inbound[target] += 1
    return inbound


def orphan_candidates(pages: list[PageRecord], inbound: dict[str, int] | None = None) -> list[str]:
    """Sitemap pages nothing else in the crawl links to."""
    inbound = inbound if inbound is not None else inbound_links(pages)
    return [
        page.url for page in pages
        if page.in_sitemap and inbound.get(_key(page.url), 0) == 0
    ]


def depth_distribution(pages: list[PageRecord], max_depth: int = 5) -> list[int]:
    """Page counts per crawl depth 0..max_depth."""
    buckets = [0] * (max_depth + 1)
    for page in pages:
        if 0 <= page.depth <= max_depth:
            buckets[page.depth] += 1
    return buckets


def section_stats(pages: list[PageRecord], limit: int = 8) -> list[SectionStats]:
    """Defect counts grouped by first path segment."""
    sections: dict[str, SectionStats] = {}
    for page in pages:
        parts = [p for p in urlsplit(page.url).path.split("/") if p]
        segment = f"/{parts[0]}/" if parts else "/"
        entry = sections.setdefault(segment, SectionStats(segment=segment))
        entry.count += 1
        if page.description_length == 0:
            entry.missing_description += 1
        if page.h1_count == 0:
            entry.missing_h1 += 1
        if is_thin(page):
            entry.thin += 1
    ordered = sorted(sections.values(), key=lambda s: s.count, reverse=True)
    return ordered[:limit]


def duplicate_titles(pages: list[PageRecord], limit: int = 10) -> list[DuplicateGroup]:
    groups: dict[str, list[str]] = {}
    for page in pages:
        value = page.title.strip().lower()
        if value:
            groups.setdefault(value, []).append(page.url)
    return [
        DuplicateGroup(value=value, urls=urls)
        for value, urls in groups.items()
        if len(urls) > 1
    ][:limit]


def hreflang_reciprocity(pages: list[PageRecord]) -> list[HreflangIssue]:
    """hreflang targets inside the crawl that do not link back."""
    by_url = {_key(page.url): page for page in pages}
    issues: list[HreflangIssue] = []
    for page in pages:
        source = _key(page.url)
        for entry in page.hreflang:
            target = _key(entry.href)
            target_page = by_url.get(target)
            if target_page is None:
                continue
            if not any(_key(back.href) == source for back in target_page.hreflang):
                issues.append(HreflangIssue(source=source, target=target, lang=entry.lang))
    return issues


def sitemap_stats(pages: list[PageRecord], inbound: dict[str, int], sample: int = 10) -> SitemapStats:
    in_sitemap = [p for p in pages if p.in_sitemap]
    not_in_sitemap = [p for p in pages if not p.in_sitemap]
    return SitemapStats(
        in_sitemap_count=len(in_sitemap),
        not_in_sitemap_count=len(not_in_sitemap),
        orphan_candidates=orphan_candidates(pages, inbound)[:sample],
        not_in_sitemap_samples=[p.url for p in not_in_sitemap[:sample]],
    )


def classify_intent(title: str = "", url: str = "", schema_types: list[str] | None = None) -> str:
    """
    Search intent of a page. Structured data decides first, then title
    and URL keywords. Falls back to informational.
    """
    title_lower = (title or "").lower()
    url_lower = (url or "").lower()
    schemas = {t.lower() for t in schema_types or []}

    if "product" in schemas:
        return TRANSACTIONAL
    if "localbusiness" in schemas:
        return LOCAL
    if schemas & {"faqpage", "howto", "article", "blogposting", "newsarticle"}:
        return INFORMATIONAL

    if "near me" in title_lower or "near-me" in url_lower:
        return LOCAL
    if _TRANSACTIONAL_WORDS.search(f"{title_lower} {url_lower}"):
        return TRANSACTIONAL
    if _COMMERCIAL_WORDS.search(title_lower):
        return COMMERCIAL
    return INFORMATIONAL


def intent_mix(pages: list[PageRecord]) -> list[IntentCount]:
    """Intent → page count, most common first."""
    counts = Counter(classify_intent(p.title, p.url, p.schema_types) for p in pages)
    return [IntentCount(intent=i, count=c) for i, c in counts.most_common()]


def content_stats(pages: list[PageRecord]) -> ContentStats:
    stats = ContentStats()
    total_words = 0
    for page in pages:
        if not page.title:
            stats.missing_title += 1
        if page.description_length == 0:
            stats.missing_description += 1
        if page.h1_count == 0:
            stats.missing_h1 += 1
        if is_thin(page):
            stats.thin += 1
        total_words += page.word_count
    stats.avg_words = round(total_words / len(pages)) if pages else 0
    return stats


def blocker_stats(pages: list[PageRecord], sample: int = 12) -> BlockerStats:
    """Counts of what keeps pages out of the index, with sample URLs."""
    stats = BlockerStats()
    for page in pages:
        status = page.status_code
        if status is not None and 300 <= status < 400:
            stats.redirects += 1
        if status is None or status >= 400:
            stats.errors += 1
        if page.noindex:
            stats.noindex += 1
        if not page.canonical:
            stats.canonical_missing += 1
        elif _key(page.canonical) != _key(landing_url(page)):
            stats.canonical_other += 1

        blocked = page.noindex or not page.canonical or (status is not None and status >= 300)
        if blocked and len(stats.samples) < sample:
            stats.samples.append(page.url)
    return stats


def format_sources(source_tally: dict[PageSource, int]) -> str:
    """'sitemap: 3 | seed: 1' style tally, zero counts omitted."""
    return " | ".join(
        f"{PageSource(source).value}: {count}"
        for source, count in source_tally.items()
        if count > 0
    )


class ResultAggregator:
    """Bundles every aggregate a report needs from one crawl run."""

    def aggregate(
        self,
        pages: list[PageRecord],
        depth_limit: int,
        source_tally: dict[PageSource, int] | None = None,
    ) -> CrawlAggregate:
        summary = summarize(pages, depth_limit)
        hreflang_issues = hreflang_reciprocity(pages)
        summary.hreflang_missing_back = len(hreflang_issues)
        summary.sources = format_sources(source_tally or {})

        inbound = inbound_links(pages)
        aggregate = CrawlAggregate(
            summary=summary,
            indexability=indexability_breakdown(pages),
            page_reasons={page.url: indexability_reasons(page) for page in pages},
            inbound_links=inbound,
            depth_distribution=depth_distribution(pages, depth_limit),
            sections=section_stats(pages),
            sitemap=sitemap_stats(pages, inbound),
            duplicate_titles=duplicate_titles(pages),
            hreflang_issues=hreflang_issues,
            intent_mix=intent_mix(pages),
            content=content_stats(pages),
            blockers=blocker_stats(pages),
        )
        logger.info(
            "Crawl aggregated",
            pages=summary.total_pages,
            indexable=summary.indexable,
            errors=summary.error_pages,
            orphans=len(aggregate.sitemap.orphan_candidates),
        )
        return aggregate
