"""
Crawl frontier: a ranked queue of QueueEntry values.

Ordering key is (source rank, depth, sequence):
- seeds before sitemap URLs before discovered links
- shallower entries first within a tier
- insertion order breaks remaining ties (FIFO)

The queued set is keyed by compare_key and only ever grows, so an entry
is accepted at most once per run.
"""

from __future__ import annotations

import heapq
import itertools

from crawlaudit.engines.base import PageSource, QueueEntry
from crawlaudit.engines.urls import URLCanonicalizer

SOURCE_RANK: dict[PageSource, int] = {
    PageSource.SEED: 0,
    PageSource.SITEMAP: 1,
    PageSource.DISCOVERED: 2,
}


class Frontier:

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, int, QueueEntry]] = []
        self._counter = itertools.count()
        self.queued: set[str] = set()

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def contains(self, url: str) -> bool:
        return URLCanonicalizer.compare_key(url) in self.queued

    def push(self, entry: QueueEntry) -> bool:
        """Queue entry unless its URL was queued before. Returns True if accepted."""
        key = URLCanonicalizer.compare_key(entry.url)
        if key in self.queued:
            return False
        self.queued.add(key)
        heapq.heappush(self._heap, (SOURCE_RANK[entry.source], entry.depth, next(self._counter), entry))
        return True

    def pop(self) -> QueueEntry:
        return heapq.heappop(self._heap)[-1]
