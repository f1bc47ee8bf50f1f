"""
Cluster snapshot history, keyed by origin, newest first.

Only ClusterSummary fields are persisted. The store keeps the newest
SNAPSHOT_HISTORY_LIMIT snapshots per origin and drops older ones on write.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from crawlaudit.core.config import get_settings
from crawlaudit.core.errors import SnapshotUnavailableError
from crawlaudit.core.redis import CacheManager
from crawlaudit.engines.base import Cluster, ClusterSummary, CrawlSnapshot

logger = structlog.get_logger(__name__)


def history_key(origin: str) -> str:
    return f"crawlHistory:{origin}"


class SnapshotStore(Protocol):
    async def append(self, origin: str, snapshot: CrawlSnapshot) -> list[CrawlSnapshot]:
        """Prepend snapshot and return the retained history, newest first."""
        ...

    async def history(self, origin: str) -> list[CrawlSnapshot]:
        ...


class InMemorySnapshotStore:
    """Process-local store. History is lost on restart."""

    def __init__(self, limit: int | None = None):
        self.limit = limit or get_settings().SNAPSHOT_HISTORY_LIMIT
        self._data: dict[str, list[CrawlSnapshot]] = {}

    async def append(self, origin: str, snapshot: CrawlSnapshot) -> list[CrawlSnapshot]:
        key = history_key(origin)
        self._data[key] = [snapshot, *self._data.get(key, [])][: self.limit]
        return list(self._data[key])

    async def history(self, origin: str) -> list[CrawlSnapshot]:
        return list(self._data.get(history_key(origin), []))


class RedisSnapshotStore:
    """Redis list per origin: LPUSH the new snapshot, LTRIM to the limit."""

    def __init__(self, redis: aioredis.Redis, limit: int | None = None, namespace: str | None = None):
        settings = get_settings()
        self.limit = limit or settings.SNAPSHOT_HISTORY_LIMIT
        self.cache = CacheManager(redis, namespace or settings.SNAPSHOT_NAMESPACE)

    async def append(self, origin: str, snapshot: CrawlSnapshot) -> list[CrawlSnapshot]:
        try:
            await self.cache.push_bounded(history_key(origin), snapshot.model_dump_json(), self.limit)
        except RedisError as e:
            raise SnapshotUnavailableError(f"Snapshot write failed: {e}", url=origin) from e
        return await self.history(origin)

    async def history(self, origin: str) -> list[CrawlSnapshot]:
        try:
            raw = await self.cache.get_list(history_key(origin), self.limit)
        except RedisError as e:
            raise SnapshotUnavailableError(f"Snapshot read failed: {e}", url=origin) from e

        snapshots: list[CrawlSnapshot] = []
        for item in raw:
            try:
                snapshots.append(CrawlSnapshot.model_validate_json(item))
            except ValidationError:
                logger.warning("Skipping unreadable snapshot", origin=origin)
        return snapshots


def build_snapshot(clusters: list[Cluster], at: datetime | None = None) -> CrawlSnapshot:
    timestamp = (at or datetime.now(timezone.utc)).isoformat()
    return CrawlSnapshot(
        timestamp=timestamp,
        clusters=[
            ClusterSummary(
                signature=c.signature,
                count=c.count,
                missing_description=c.missing_description,
                missing_h1=c.missing_h1,
                thin=c.thin,
            )
            for c in clusters
        ],
    )


async def record(origin: str, clusters: list[Cluster], store: SnapshotStore) -> list[CrawlSnapshot]:
    """Store this run's clusters and return the retained history, newest first."""
    try:
        history = await store.append(origin, build_snapshot(clusters))
    except SnapshotUnavailableError:
        raise
    except Exception as e:
        raise SnapshotUnavailableError(f"Snapshot store failed: {e}", url=origin) from e
    logger.debug("Cluster snapshot stored", origin=origin, history=len(history))
    return history
