"""Append-only analytics event store and its aggregate read queries."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Literal, Optional, Tuple

from sqlalchemy import Float, String, case, cast, func, insert, select

from .database import AnalyticsEventRecord, Database, as_utc
from .models import AnalyticsEvent, EventType, utcnow

logger = logging.getLogger(__name__)

Dimension = Literal["category", "query"]


def _event_row(event: AnalyticsEvent) -> dict:
    return {
        "type": event.type.value,
        "category": event.category,
        "query": event.query,
        "product_id": event.product_id,
        "product_url": event.product_url,
        "user_id": event.user_id,
        "request_id": event.request_id,
        "latency_ms": event.latency_ms,
        "ts": as_utc(event.ts),
    }


def _count_of(event_type: EventType):
    return func.sum(case((AnalyticsEventRecord.type == event_type.value, 1), else_=0))


@dataclass
class EventStore:
    """SQL-backed event log. Every method is one independent store call."""

    db: Database

    def record_impressions(self, events: Iterable[AnalyticsEvent]) -> int:
        rows = [_event_row(event) for event in events]
        if not rows:
            return 0
        with self.db.session() as s:
            s.execute(insert(AnalyticsEventRecord), rows)
        logger.debug("recorded %s impression events", len(rows))
        return len(rows)

    def record_click(self, event: AnalyticsEvent) -> None:
        with self.db.session() as s:
            s.execute(insert(AnalyticsEventRecord), [_event_row(event)])

    def record_latency(
        self,
        latency_ms: float,
        request_id: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> None:
        event = AnalyticsEvent(
            type=EventType.LATENCY,
            latency_ms=latency_ms,
            request_id=request_id,
            ts=ts or utcnow(),
        )
        with self.db.session() as s:
            s.execute(insert(AnalyticsEventRecord), [_event_row(event)])

    def boost_rows(self, dimension: Dimension, since: datetime) -> List[Tuple[str, int, int]]:
        """``(key, impressions, clicks)`` per distinct key seen since ``since``."""

        column = getattr(AnalyticsEventRecord, dimension)
        stmt = (
            select(column, _count_of(EventType.IMPRESSION), _count_of(EventType.CLICK))
            .where(AnalyticsEventRecord.ts >= since, column.is_not(None))
            .group_by(column)
        )
        with self.db.session() as s:
            return [(key, int(imps or 0), int(clicks or 0)) for key, imps, clicks in s.execute(stmt)]

    def top_categories(self, event_type: EventType, since: datetime, limit: int) -> List[Tuple[str, int]]:
        count = func.count().label("total")
        stmt = (
            select(AnalyticsEventRecord.category, count)
            .where(
                AnalyticsEventRecord.type == event_type.value,
                AnalyticsEventRecord.ts >= since,
                AnalyticsEventRecord.category.is_not(None),
            )
            .group_by(AnalyticsEventRecord.category)
            .order_by(count.desc(), AnalyticsEventRecord.category)
            .limit(limit)
        )
        with self.db.session() as s:
            return [(category, int(n)) for category, n in s.execute(stmt)]

    def top_queries(self, since: datetime, limit: int) -> List[Tuple[str, int]]:
        """Queries ranked by how many distinct requests surfaced them.

        Counted from impression events, so a query whose search returned no
        products never appears here.
        """

        request_key = func.coalesce(AnalyticsEventRecord.request_id, cast(AnalyticsEventRecord.id, String))
        count = func.count(func.distinct(request_key)).label("total")
        stmt = (
            select(AnalyticsEventRecord.query, count)
            .where(
                AnalyticsEventRecord.type == EventType.IMPRESSION.value,
                AnalyticsEventRecord.ts >= since,
                AnalyticsEventRecord.query.is_not(None),
            )
            .group_by(AnalyticsEventRecord.query)
            .order_by(count.desc(), AnalyticsEventRecord.query)
            .limit(limit)
        )
        with self.db.session() as s:
            return [(query, int(n)) for query, n in s.execute(stmt)]

    def ctr_by_category(self, since: datetime, limit: int) -> List[Tuple[str, int, int, float]]:
        impressions = _count_of(EventType.IMPRESSION)
        clicks = _count_of(EventType.CLICK)
        ctr = case(
            (impressions > 0, cast(clicks, Float) / impressions),
            else_=0.0,
        ).label("ctr")
        stmt = (
            select(AnalyticsEventRecord.category, impressions, clicks, ctr)
            .where(AnalyticsEventRecord.ts >= since, AnalyticsEventRecord.category.is_not(None))
            .group_by(AnalyticsEventRecord.category)
            .order_by(ctr.desc(), AnalyticsEventRecord.category)
            .limit(limit)
        )
        with self.db.session() as s:
            return [
                (category, int(imps or 0), int(n_clicks or 0), float(rate or 0.0))
                for category, imps, n_clicks, rate in s.execute(stmt)
            ]

    def latency_samples(self, since: datetime) -> List[float]:
        stmt = (
            select(AnalyticsEventRecord.latency_ms)
            .where(
                AnalyticsEventRecord.type == EventType.LATENCY.value,
                AnalyticsEventRecord.ts >= since,
                AnalyticsEventRecord.latency_ms.is_not(None),
            )
            .order_by(AnalyticsEventRecord.latency_ms)
        )
        with self.db.session() as s:
            return [float(value) for value in s.scalars(stmt)]
