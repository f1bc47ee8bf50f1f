"""
Tests for the logging processors and crawl log context.
"""

import structlog

from crawlaudit.core.logging import MAX_VALUE_LENGTH, add_severity, clip_long_values, crawl_context


class TestProcessors:

    def test_severity_mapping(self):
        assert add_severity(None, "warning", {})["severity"] == "WARNING"
        assert add_severity(None, "msg", {})["severity"] == "INFO"

    def test_long_values_clipped(self):
        event = clip_long_values(None, "info", {"url": "x" * 1000, "pages": 3, "event": "short"})
        assert len(event["url"]) == MAX_VALUE_LENGTH + 3
        assert event["url"].endswith("...")
        assert event["pages"] == 3
        assert event["event"] == "short"


class TestCrawlContext:

    def test_merge_carries_bound_values(self):
        with crawl_context("https://example.com/", origin="https://example.com") as run_id:
            event = structlog.contextvars.merge_contextvars(None, "info", {"event": "Crawl progress"})
        assert event["run_id"] == run_id
        assert event["audit_url"] == "https://example.com/"
        assert event["origin"] == "https://example.com"

    def test_explicit_values_win_over_context(self):
        with crawl_context("https://example.com/"):
            event = structlog.contextvars.merge_contextvars(None, "info", {"audit_url": "override"})
        assert event["audit_url"] == "override"

    def test_values_removed_on_exit(self):
        with crawl_context("https://example.com/"):
            pass
        assert "run_id" not in structlog.contextvars.get_contextvars()

    def test_outer_values_restored_on_exit(self):
        structlog.contextvars.bind_contextvars(run_id="outer")
        try:
            with crawl_context("https://example.com/") as run_id:
                assert run_id != "outer"
                assert structlog.contextvars.get_contextvars()["run_id"] == run_id
            assert structlog.contextvars.get_contextvars()["run_id"] == "outer"
        finally:
            structlog.contextvars.clear_contextvars()

    def test_values_removed_when_block_raises(self):
        try:
            with crawl_context("https://example.com/"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert "run_id" not in structlog.contextvars.get_contextvars()
