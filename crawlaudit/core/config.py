"""
Configuration system with environment-based settings.
Uses pydantic-settings for validation and type safety.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Application
    APP_VERSION: str = "1.0.0"
    ENV: Literal["development", "staging", "production"] = "development"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Redis (snapshot history)
    REDIS_DSN: RedisDsn = Field("redis://localhost:6379/0", description="Redis connection string")
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Snapshots
    SNAPSHOT_BACKEND: Literal["memory", "redis"] = "memory"
    SNAPSHOT_HISTORY_LIMIT: int = 5
    SNAPSHOT_NAMESPACE: str = "crawlaudit"

    # Crawler
    CRAWLER_USER_AGENT: str = "CrawlAuditBot/1.0 (+https://crawlaudit.dev/bot)"
    CRAWLER_DEFAULT_PAGES: int = 20
    CRAWLER_MIN_PAGES: int = 5
    CRAWLER_MAX_PAGES: int = 50
    CRAWLER_MAX_DEPTH: int = 5
    CRAWLER_REQUEST_TIMEOUT: float = 5.0
    CRAWLER_MAX_CONCURRENCY: int = 4

    # Robots.txt
    ROBOTS_CACHE_TTL_SECONDS: float = 600.0   # 10 minutes
    ROBOTS_FETCH_TIMEOUT: float = 3.0
    ROBOTS_MAX_BYTES: int = 200_000
    # Safety ceilings for rule matching. Raising them widens worst-case regex cost.
    ROBOTS_PATTERN_MAX_LENGTH: int = 500
    ROBOTS_PATTERN_MAX_WILDCARDS: int = 10

    # Sitemaps
    SITEMAP_FETCH_TIMEOUT: float = 5.0
    SITEMAP_MAX_URLS: int = 1000
    SITEMAP_MAX_INDEX_DEPTH: int = 2

    # Template clustering
    CLUSTER_ALERT_THRESHOLD: float = 0.6
    CLUSTER_LIMIT: int = 8

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors(cls, v: str | list) -> list:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    def clamp_pages(self, requested: int | None) -> int:
        """Clamp a requested page budget into the allowed crawl window."""
        if requested is None:
            requested = self.CRAWLER_DEFAULT_PAGES
        return max(self.CRAWLER_MIN_PAGES, min(self.CRAWLER_MAX_PAGES, requested))


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - created once per process."""
    return Settings()
