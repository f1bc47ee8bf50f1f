"""
URL canonicalization.

Two identities are used across the crawl:
- canonicalize(): the CanonicalURL key. Host lower-cased, default port
  dropped, fragment dropped, trailing slash stripped on non-root paths.
- compare_key(): stricter key for cross-run and sitemap membership checks.
  Additionally ignores host case, a leading "www." and index/default
  document suffixes.

Both are pure and idempotent.
"""

from __future__ import annotations

import re
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from crawlaudit.core.errors import InvalidURLError

_DEFAULT_PORTS = {"http": 80, "https": 443}
_INDEX_SUFFIX = re.compile(r"/(index\.html?|default\.html?)$", re.IGNORECASE)
_SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:")


class URLCanonicalizer:
    """Normalizes URLs for deduplication and comparison."""

    @classmethod
    def canonicalize(cls, raw: str, base_url: str = "") -> str:
        """
        Resolve raw against base_url and return its canonical identity.
        Raises InvalidURLError if the result is not an absolute http(s) URL.
        """
        if raw is None:
            raise InvalidURLError("Empty URL")
        value = str(raw).strip()
        if not value:
            raise InvalidURLError("Empty URL")
        if value.lower().startswith(_SKIPPED_SCHEMES):
            raise InvalidURLError(f"Unsupported URL scheme: {value}", url=value)

        try:
            resolved = urljoin(base_url, value) if base_url else value
            parts = urlsplit(resolved)
            # Accessing .port validates the netloc
            parts.port
        except ValueError as exc:
            raise InvalidURLError(f"Malformed URL: {value} ({exc})", url=value) from exc

        if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
            raise InvalidURLError(f"Not an absolute http(s) URL: {value}", url=value)

        path = parts.path or "/"
        if path != "/" and path.endswith("/"):
            path = path.rstrip("/") or "/"

        return urlunsplit((
            parts.scheme.lower(),
            cls.normalize_netloc(parts),
            path,
            parts.query,
            "",  # No fragment
        ))

    @classmethod
    def safe_canonicalize(cls, raw: str, base_url: str = "") -> str | None:
        """Canonicalize, returning None instead of raising."""
        try:
            return cls.canonicalize(raw, base_url)
        except InvalidURLError:
            return None

    @classmethod
    def compare_key(cls, url: str, origin: str = "") -> str:
        """Host + path + query key used for membership checks across sources."""
        if not origin and "://" not in str(url):
            # Already a scheme-less key
            url = f"http://{url}"
        canonical = cls.canonicalize(url, origin)
        parts = urlsplit(canonical)
        host = cls.normalize_host(parts.hostname or "")
        if parts.port:
            host = f"{host}:{parts.port}"
        path = cls.normalize_path(parts.path)
        query = f"?{parts.query}" if parts.query else ""
        return f"{host}{path}{query}"

    @staticmethod
    def normalize_netloc(parts: SplitResult) -> str:
        """Lower-cased host with the scheme's default port dropped. Userinfo is kept."""
        host = (parts.hostname or "").lower()
        if ":" in host:
            host = f"[{host}]"
        port = parts.port
        if port is not None and _DEFAULT_PORTS.get(parts.scheme.lower()) != port:
            host = f"{host}:{port}"
        userinfo, _, _ = parts.netloc.rpartition("@")
        return f"{userinfo}@{host}" if userinfo else host

    @staticmethod
    def normalize_host(host: str) -> str:
        host = (host or "").lower()
        return host[4:] if host.startswith("www.") else host

    @staticmethod
    def normalize_path(path: str) -> str:
        path = _INDEX_SUFFIX.sub("/", path or "/")
        if len(path) > 1 and path.endswith("/"):
            path = path[:-1]
        return path

    @classmethod
    def origin_of(cls, url: str) -> str:
        try:
            parts = urlsplit(url)
            if not parts.scheme or not parts.netloc:
                raise InvalidURLError(f"URL has no origin: {url}", url=url)
            return f"{parts.scheme.lower()}://{cls.normalize_netloc(parts)}"
        except ValueError as exc:
            raise InvalidURLError(f"Malformed URL: {url} ({exc})", url=url) from exc

    @classmethod
    def is_same_origin(cls, url: str, origin: str) -> bool:
        try:
            return cls.origin_of(url) == cls.origin_of(origin)
        except InvalidURLError:
            return False

    @staticmethod
    def path_depth(url: str) -> int:
        """Number of non-empty path segments."""
        try:
            path = urlsplit(url).path
        except ValueError:
            return 0
        return len([segment for segment in path.split("/") if segment])

    @staticmethod
    def request_path(url: str) -> str:
        """Path plus query, the form robots.txt rules are matched against."""
        parts = urlsplit(url)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path

