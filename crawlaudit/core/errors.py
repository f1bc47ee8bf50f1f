"""
Error taxonomy for the crawl subsystem.

None of these abort a crawl run. Each is caught at the component that owns
the failure and converted into a Diagnostic alongside the results.
"""

from __future__ import annotations


class CrawlAuditError(Exception):
    """Base class for all crawl audit errors."""

    def __init__(self, message: str, url: str = ""):
        self.message = message
        self.url = url
        super().__init__(message)


class InvalidURLError(CrawlAuditError):
    """Malformed URL input. Not retried; the entry is dropped."""


class FetchFailure(CrawlAuditError):
    """Network error or timeout while fetching a page."""


class MalformedRobotsPatternError(CrawlAuditError):
    """robots.txt pattern exceeds the safety ceilings or fails to compile."""

    def __init__(self, message: str, pattern: str):
        self.pattern = pattern
        super().__init__(message)


class SitemapUnavailableError(CrawlAuditError):
    """Sitemap could not be fetched or held no usable XML."""


class SnapshotUnavailableError(CrawlAuditError):
    """Snapshot history could not be read or written."""
