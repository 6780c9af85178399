"""Pydantic models shared across the search, cache and analytics layers."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_SEARCH_LIMIT = 1
MAX_SEARCH_LIMIT = 8
DEFAULT_SEARCH_LIMIT = 3
UNKNOWN_TITLE = "Unknown Product"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessToken(BaseModel):
    value: str
    expires_at: float = Field(..., description="Expiry as epoch seconds")

    def is_fresh(self, now: float, margin: float) -> bool:
        return self.expires_at > now + margin


class SearchRequest(BaseModel):
    """One catalog query produced for an identified item."""

    query: str = Field(..., description="Search-optimized product query")
    limit: int = Field(DEFAULT_SEARCH_LIMIT, ge=MIN_SEARCH_LIMIT, le=MAX_SEARCH_LIMIT)
    category: str | None = Field(None, description="Item category used for analytics attribution")

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value: Any) -> Any:
        # Vision output is loosely typed: "5", 5.0 and 12 all show up.
        if value is None:
            return DEFAULT_SEARCH_LIMIT
        try:
            number = int(value)
        except (TypeError, ValueError):
            return value
        return min(max(number, MIN_SEARCH_LIMIT), MAX_SEARCH_LIMIT)


class Product(BaseModel):
    id: str | None = None
    title: str = UNKNOWN_TITLE
    image_url: str | None = None
    min_price: str | None = None
    max_price: str | None = None
    product_url: str | None = None
    vendor: str | None = None
    search_query: str | None = None


class SearchResult(BaseModel):
    request: SearchRequest
    products: List[Product] = Field(default_factory=list)


class QueryCount(BaseModel):
    query: str
    count: int


class DispatchOutcome(BaseModel):
    products: List[Product]
    per_request_counts: List[QueryCount]
    results: List[SearchResult]


class Session(BaseModel):
    """A completed pipeline run, cached by frame fingerprint. Immutable."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    video_id: str | None = None
    timestamp_sec: float | None = None
    frame_hash: str
    items: List[SearchRequest] = Field(default_factory=list)
    results: List[SearchResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class EventType(str, Enum):
    IMPRESSION = "impression"
    CLICK = "click"
    LATENCY = "latency"
    OTHER = "other"


class AnalyticsEvent(BaseModel):
    type: EventType
    category: str | None = None
    query: str | None = None
    product_id: str | None = None
    product_url: str | None = None
    user_id: str | None = None
    request_id: str | None = None
    latency_ms: float | None = None
    ts: datetime = Field(default_factory=utcnow)


class BoostSignal(BaseModel):
    key: str
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0


class BoostTable(BaseModel):
    categories: Dict[str, BoostSignal] = Field(default_factory=dict)
    queries: Dict[str, BoostSignal] = Field(default_factory=dict)


class CategoryCount(BaseModel):
    category: str
    count: int


class CategoryCtr(BaseModel):
    category: str
    impressions: int
    clicks: int
    ctr: float


class LatencyStats(BaseModel):
    p50: float | None = None
    p95: float | None = None


class Insights(BaseModel):
    top_detected_categories: List[CategoryCount]
    top_clicked_categories: List[CategoryCount]
    top_item_queries: List[QueryCount]
    ctr_by_category: List[CategoryCtr]
    latency_stats: LatencyStats


class FrameResponse(BaseModel):
    session: Session
    cached: bool
    products: List[Product]
    per_request_counts: List[QueryCount]
