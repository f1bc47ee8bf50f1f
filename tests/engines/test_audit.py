"""
End-to-end tests for the Site Auditor against a mocked site.
Uses httpx MockTransport to avoid real network calls.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import structlog

from crawlaudit.core.errors import SnapshotUnavailableError
from crawlaudit.engines.audit import AuditRequest, SiteAuditor
from crawlaudit.engines.base import DiagnosticKind, PageSource
from crawlaudit.engines.clustering.snapshots import InMemorySnapshotStore

ORIGIN = "https://example.com"

ROBOTS = """User-agent: GPTBot
Disallow: /

User-agent: *
Disallow: /admin

Sitemap: https://example.com/sitemap.xml
"""

SITEMAP = """<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
<url><loc>https://example.com/</loc></url>
<url><loc>https://example.com/about</loc></url>
</urlset>"""


def html(title: str, links: list[str], meta_robots: str = "") -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    robots = f'<meta name="robots" content="{meta_robots}">' if meta_robots else ""
    return (
        f"<html><head><title>{title}</title>"
        f'<meta name="description" content="Description for {title}">{robots}'
        f"</head><body><h1>{title}</h1><p>{'word ' * 50}</p>{anchors}</body></html>"
    )


def site_handler(robots: str | None = ROBOTS, home_meta: str = ""):
    pages = {
        "/": html("Home", ["/about", "/blog"], home_meta),
        "/about": html("About", ["/"]),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/robots.txt":
            return httpx.Response(200, text=robots) if robots is not None else httpx.Response(404)
        if path == "/sitemap.xml":
            return httpx.Response(200, text=SITEMAP, headers={"content-type": "application/xml"})
        if path == "/blog":
            return httpx.Response(500, html="<html><title>Oops</title></html>")
        if path in pages:
            return httpx.Response(200, html=pages[path])
        return httpx.Response(404, html="<html></html>")

    return handler


def auditor_for(handler, **kwargs) -> SiteAuditor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SiteAuditor(client=client, **kwargs)


# ─────────────────────────────────────────────
# Full pipeline
# ─────────────────────────────────────────────

class TestSiteAuditor:

    @pytest.mark.asyncio
    async def test_full_audit(self):
        auditor = auditor_for(site_handler())
        report = await auditor.execute(AuditRequest(url=ORIGIN, max_pages=10))

        assert report.status == "completed"
        assert report.origin == ORIGIN
        assert report.robots_status == "ok"
        assert report.sitemap_urls == 2
        assert [p.url for p in report.pages] == [f"{ORIGIN}/", f"{ORIGIN}/about", f"{ORIGIN}/blog"]
        assert report.pages[2].status == 500
        assert report.source_tally[PageSource.SEED] == 1
        assert report.source_tally[PageSource.SITEMAP] == 1
        assert report.source_tally[PageSource.DISCOVERED] == 1

        assert report.aggregate.summary.total_pages == 3
        assert report.aggregate.summary.error_pages == 1
        assert report.clusters
        assert report.cluster_diffs == []
        assert report.execution_time_ms > 0

        verdicts = {v.user_agent_token: v for v in report.ai_visibility}
        assert not verdicts["GPTBot"].allowed
        assert verdicts["PerplexityBot"].allowed

    @pytest.mark.asyncio
    async def test_second_run_reports_cluster_diffs(self):
        auditor = auditor_for(site_handler(), snapshot_store=InMemorySnapshotStore())
        await auditor.execute(AuditRequest(url=ORIGIN))
        report = await auditor.execute(AuditRequest(url=ORIGIN))

        assert report.cluster_diffs
        assert all(d.count_delta == 0 for d in report.cluster_diffs)

    @pytest.mark.asyncio
    async def test_page_budget_is_clamped(self):
        report = await auditor_for(site_handler()).execute(AuditRequest(url=ORIGIN, max_pages=1000))
        assert report.status == "completed"
        assert len(report.pages) <= 50

    @pytest.mark.asyncio
    async def test_noai_meta_on_audited_page(self):
        report = await auditor_for(site_handler(home_meta="noai")).execute(AuditRequest(url=ORIGIN))
        assert all(v.blocked_by_meta for v in report.ai_visibility)

    @pytest.mark.asyncio
    async def test_missing_robots_is_a_diagnostic(self):
        report = await auditor_for(site_handler(robots=None)).execute(AuditRequest(url=ORIGIN))
        assert report.status == "completed"
        assert report.robots_status == "error"
        assert DiagnosticKind.ROBOTS_UNAVAILABLE in [d.kind for d in report.diagnostics]
        assert all(v.allowed for v in report.ai_visibility)

    @pytest.mark.asyncio
    async def test_snapshot_failure_degrades_to_empty_diff(self):
        store = AsyncMock()
        store.append.side_effect = SnapshotUnavailableError("redis down", url=ORIGIN)
        report = await auditor_for(site_handler(), snapshot_store=store).execute(AuditRequest(url=ORIGIN))

        assert report.status == "completed"
        assert report.cluster_diffs == []
        assert DiagnosticKind.SNAPSHOT_UNAVAILABLE in [d.kind for d in report.diagnostics]

    @pytest.mark.asyncio
    async def test_invalid_url_fails_cleanly(self):
        report = await auditor_for(site_handler()).execute(AuditRequest(url="not a url"))
        assert report.status == "failed"
        assert report.diagnostics[0].kind == DiagnosticKind.INVALID_URL

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_report(self):
        aggregator = MagicMock()
        aggregator.aggregate.side_effect = RuntimeError("boom")
        report = await auditor_for(site_handler(), aggregator=aggregator).execute(AuditRequest(url=ORIGIN))

        assert report.status == "failed"
        assert report.error_message == "boom"
        assert report.diagnostics[0].kind == DiagnosticKind.ENGINE_FAILED


# ─────────────────────────────────────────────
# Log context
# ─────────────────────────────────────────────

class TestAuditLogContext:

    @pytest.mark.asyncio
    async def test_requests_carry_run_context(self):
        inner = site_handler()
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(structlog.contextvars.get_contextvars())
            return inner(request)

        report = await auditor_for(handler).execute(AuditRequest(url=ORIGIN, max_pages=5))

        assert report.run_id
        assert seen
        assert {ctx["run_id"] for ctx in seen} == {report.run_id}
        assert all(ctx["origin"] == ORIGIN and ctx["audit_url"] == ORIGIN for ctx in seen)

    @pytest.mark.asyncio
    async def test_context_cleared_after_run(self):
        await auditor_for(site_handler()).execute(AuditRequest(url=ORIGIN, max_pages=5))
        context = structlog.contextvars.get_contextvars()
        assert "run_id" not in context
        assert "origin" not in context

    @pytest.mark.asyncio
    async def test_failed_report_has_run_id(self):
        report = await auditor_for(site_handler()).execute(AuditRequest(url="not a url"))
        assert report.run_id
        assert "run_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_each_run_gets_its_own_id(self):
        auditor = auditor_for(site_handler())
        first = await auditor.execute(AuditRequest(url=ORIGIN, max_pages=5))
        second = await auditor.execute(AuditRequest(url=ORIGIN, max_pages=5))
        assert first.run_id != second.run_id
