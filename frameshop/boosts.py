"""Ranking signals and summary insights derived from analytics history.

Signals are recomputed from the event log on every call and never stored.
How heavily to weight them against catalog order is left to the caller.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Optional, Sequence

from .database import as_utc
from .events import Dimension, EventStore
from .models import (
    BoostSignal,
    BoostTable,
    CategoryCount,
    CategoryCtr,
    EventType,
    Insights,
    LatencyStats,
    QueryCount,
)

logger = logging.getLogger(__name__)


def click_through_rate(impressions: int, clicks: int) -> float:
    return clicks / impressions if impressions > 0 else 0.0


def percentile(samples: Sequence[float], fraction: float) -> Optional[float]:
    """Continuous percentile with linear interpolation between closest ranks.

    Matches SQL ``percentile_cont``: the value at rank ``fraction * (n - 1)``
    of the sorted samples. Returns ``None`` when there are no samples.
    """

    if not samples:
        return None
    ordered = sorted(samples)
    rank = fraction * (len(ordered) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[lower])
    weight = rank - lower
    return float(ordered[lower] + (ordered[upper] - ordered[lower]) * weight)


def _signals(store: EventStore, dimension: Dimension, since: datetime) -> Dict[str, BoostSignal]:
    return {
        key: BoostSignal(key=key, impressions=imps, clicks=clicks, ctr=click_through_rate(imps, clicks))
        for key, imps, clicks in store.boost_rows(dimension, since)
    }


def compute_boosts(store: EventStore, since: datetime) -> BoostTable:
    since = as_utc(since)
    table = BoostTable(categories=_signals(store, "category", since), queries=_signals(store, "query", since))
    logger.debug("boosts since=%s categories=%s queries=%s", since.isoformat(), len(table.categories), len(table.queries))
    return table


def get_insights(store: EventStore, since: datetime, limit: int = 10) -> Insights:
    since = as_utc(since)
    samples = store.latency_samples(since)
    return Insights(
        top_detected_categories=[
            CategoryCount(category=category, count=count)
            for category, count in store.top_categories(EventType.IMPRESSION, since, limit)
        ],
        top_clicked_categories=[
            CategoryCount(category=category, count=count)
            for category, count in store.top_categories(EventType.CLICK, since, limit)
        ],
        top_item_queries=[QueryCount(query=query, count=count) for query, count in store.top_queries(since, limit)],
        ctr_by_category=[
            CategoryCtr(category=category, impressions=imps, clicks=clicks, ctr=ctr)
            for category, imps, clicks, ctr in store.ctr_by_category(since, limit)
        ],
        latency_stats=LatencyStats(p50=percentile(samples, 0.5), p95=percentile(samples, 0.95)),
    )
