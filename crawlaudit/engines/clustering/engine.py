"""
Template Clustering Engine

Groups crawled pages by a coarse structural signature so template-wide
defects (missing descriptions, missing H1s, thin content) surface as one
alert instead of N page-level findings. Snapshot history per origin lets
a run report how each template moved since the previous crawl.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from crawlaudit.engines.base import Cluster, ClusterDelta, ClusterSummary, CrawlSnapshot, PageRecord

DIGITS = re.compile(r"\d+")
WHITESPACE = re.compile(r"\s+")
TITLE_PATTERN_LENGTH = 60

ALERT_MESSAGES = {
    "missing_description_rate": "Template issue: {count} pages missing meta descriptions.",
    "missing_h1_rate": "Template issue: {count} pages missing H1 tags.",
    "thin_rate": "Template issue: {count} pages appear thin (< 300 words).",
}


def _description_bucket(length: int) -> str:
    if length == 0:
        return "desc0"
    if length < 70:
        return "descShort"
    if length > 160:
        return "descLong"
    return "descOk"


def _word_bucket(words: int) -> str:
    if words < 300:
        return "thin"
    if words < 800:
        return "mid"
    return "long"


def title_pattern(title: str) -> str:
    """Digits become {#}, whitespace collapses, result capped at 60 chars."""
    pattern = WHITESPACE.sub(" ", DIGITS.sub("{#}", title or "")).strip()
    return pattern[:TITLE_PATTERN_LENGTH]


def page_signature(page: PageRecord) -> str:
    try:
        depth = len([p for p in urlsplit(page.url).path.split("/") if p])
    except ValueError:
        depth = 0
    return "|".join([
        str(depth),
        title_pattern(page.title),
        f"h1{page.h1_count}",
        _description_bucket(page.description_length),
        _word_bucket(page.word_count),
    ])


def cluster_templates(pages: list[PageRecord], limit: int = 8) -> list[Cluster]:
    """Largest template clusters first, each with per-defect counts and rates."""
    clusters: dict[str, Cluster] = {}
    for page in pages:
        signature = page_signature(page)
        cluster = clusters.get(signature)
        if cluster is None:
            cluster = clusters[signature] = Cluster(signature=signature, sample_url=page.url)
        cluster.count += 1
        if page.description_length == 0:
            cluster.missing_description += 1
        if page.h1_count == 0:
            cluster.missing_h1 += 1
        if page.h1_count > 1:
            cluster.multiple_h1 += 1
        if 0 < page.word_count < 300:
            cluster.thin += 1

    for cluster in clusters.values():
        cluster.missing_description_rate = cluster.missing_description / cluster.count
        cluster.missing_h1_rate = cluster.missing_h1 / cluster.count
        cluster.thin_rate = cluster.thin / cluster.count

    ordered = sorted(clusters.values(), key=lambda c: c.count, reverse=True)
    return ordered[:limit]


def cluster_alerts(clusters: list[Cluster], threshold: float = 0.6, limit: int = 5) -> list[str]:
    alerts: list[str] = []
    for cluster in clusters:
        for rate_field, message in ALERT_MESSAGES.items():
            if getattr(cluster, rate_field) > threshold:
                alerts.append(message.format(count=cluster.count))
    return alerts[:limit]


def _rate(part: int, count: int) -> float:
    return part / count if count else 0.0


def diff_cluster_history(history: list[CrawlSnapshot], limit: int = 6) -> list[ClusterDelta]:
    """
    Compare the newest snapshot with the one before it.

    History is newest first. A signature absent from the previous snapshot
    reports its raw values as the delta and is flagged is_new.
    """
    if len(history) < 2:
        return []

    latest, previous = history[0], history[1]
    before_map = {c.signature: c for c in previous.clusters}
    empty = ClusterSummary(signature="")

    deltas: list[ClusterDelta] = []
    for cluster in latest.clusters:
        before = before_map.get(cluster.signature)
        base = before or empty
        deltas.append(ClusterDelta(
            signature=cluster.signature,
            count_delta=cluster.count - base.count,
            missing_description_delta=cluster.missing_description - base.missing_description,
            missing_h1_delta=cluster.missing_h1 - base.missing_h1,
            thin_delta=cluster.thin - base.thin,
            missing_description_rate_delta=(
                _rate(cluster.missing_description, cluster.count)
                - _rate(base.missing_description, base.count)
            ),
            missing_h1_rate_delta=_rate(cluster.missing_h1, cluster.count) - _rate(base.missing_h1, base.count),
            thin_rate_delta=_rate(cluster.thin, cluster.count) - _rate(base.thin, base.count),
            is_new=before is None,
        ))
    return deltas[:limit]
