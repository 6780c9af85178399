"""Frame-to-products pipeline: cache check, identification, search, write-back."""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from time import perf_counter
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Union

from pydantic import ValidationError

from .analytics import AnalyticsDispatcher, AnalyticsSink, NullSink
from .boosts import compute_boosts
from .events import EventStore
from .models import (
    AnalyticsEvent,
    BoostTable,
    EventType,
    FrameResponse,
    Product,
    QueryCount,
    SearchRequest,
    Session,
    utcnow,
)
from .orchestrator import SearchOrchestrator, merge_results
from .session_cache import SessionCache

logger = logging.getLogger(__name__)

ItemSpec = Union[SearchRequest, Mapping[str, Any]]
Ranker = Callable[[List[Product], BoostTable], List[Product]]

DEFAULT_BOOST_WINDOW = timedelta(days=7)


class VisionIdentifier(Protocol):
    async def identify_items(self, frame_bytes: bytes) -> Sequence[ItemSpec]: ...


def coerce_items(items: Sequence[ItemSpec]) -> List[SearchRequest]:
    """Turn loosely-typed item descriptors into requests, skipping invalid ones."""

    requests: List[SearchRequest] = []
    for item in items:
        if isinstance(item, SearchRequest):
            requests.append(item)
            continue
        try:
            requests.append(SearchRequest.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping invalid item %r: %s", item, exc.errors()[0].get("msg"))
    return requests


class FramePipeline:
    def __init__(
        self,
        orchestrator: SearchOrchestrator,
        session_cache: SessionCache,
        vision: Optional[VisionIdentifier] = None,
        event_store: Optional[EventStore] = None,
        dispatcher: Optional[AnalyticsDispatcher] = None,
        sink: Optional[AnalyticsSink] = None,
        ranker: Optional[Ranker] = None,
        boost_window: timedelta = DEFAULT_BOOST_WINDOW,
    ) -> None:
        self.orchestrator = orchestrator
        self.session_cache = session_cache
        self.vision = vision
        self.event_store = event_store
        self.dispatcher = dispatcher or AnalyticsDispatcher()
        self.sink = sink or NullSink()
        self.ranker = ranker
        self.boost_window = boost_window

    async def process_frame(
        self,
        frame_hash: str,
        frame_bytes: Optional[bytes] = None,
        items: Optional[Sequence[ItemSpec]] = None,
        video_id: Optional[str] = None,
        timestamp_sec: Optional[float] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> FrameResponse:
        t0 = perf_counter()
        request_id = request_id or uuid.uuid4().hex

        cached = await self.session_cache.lookup(frame_hash)
        if cached is not None:
            logger.info("frame cache_hit=1 frame_hash=%s session_id=%s", frame_hash, cached.session_id)
            return FrameResponse(
                session=cached,
                cached=True,
                products=merge_results(cached.results),
                per_request_counts=[QueryCount(query=r.request.query, count=len(r.products)) for r in cached.results],
            )

        if items is None:
            if self.vision is None:
                raise ValueError("No items supplied and no vision identifier configured")
            if frame_bytes is None:
                raise ValueError("frame_bytes is required when items are not supplied")
            items = await self.vision.identify_items(frame_bytes)
        requests = coerce_items(items)

        outcome = await self.orchestrator.dispatch(requests)
        products = await self._rank(outcome.products)

        session = Session(
            session_id=uuid.uuid4().hex,
            video_id=video_id,
            timestamp_sec=timestamp_sec,
            frame_hash=frame_hash,
            items=requests[: self.orchestrator.max_requests],
            results=outcome.results,
            created_at=self.session_cache.now(),
        )
        await self.session_cache.store(session)

        response = FrameResponse(
            session=session,
            cached=False,
            products=products,
            per_request_counts=outcome.per_request_counts,
        )
        latency_ms = (perf_counter() - t0) * 1000
        logger.info(
            "frame cache_hit=0 frame_hash=%s items=%s products=%s total=%.2fms",
            frame_hash,
            len(requests),
            len(products),
            latency_ms,
        )
        self._enqueue_impressions(session, products, user_id, request_id, latency_ms)
        return response

    async def _rank(self, products: List[Product]) -> List[Product]:
        if self.ranker is None or self.event_store is None:
            return products
        try:
            boosts = await asyncio.to_thread(compute_boosts, self.event_store, utcnow() - self.boost_window)
        except Exception as exc:
            logger.warning("Boost computation failed, keeping catalog order: %s", exc)
            return products
        return self.ranker(products, boosts)

    def _enqueue_impressions(
        self,
        session: Session,
        products: List[Product],
        user_id: Optional[str],
        request_id: str,
        latency_ms: float,
    ) -> None:
        categories = {item.query: item.category for item in session.items}
        events = [
            AnalyticsEvent(
                type=EventType.IMPRESSION,
                category=categories.get(product.search_query or ""),
                query=product.search_query,
                product_id=product.id,
                product_url=product.product_url,
                user_id=user_id,
                request_id=request_id,
            )
            for product in products
        ]
        store = self.event_store
        if store is not None:
            self.dispatcher.submit("impressions", lambda: asyncio.to_thread(store.record_impressions, events))
            self.dispatcher.submit(
                "latency", lambda: asyncio.to_thread(store.record_latency, latency_ms, request_id)
            )
        properties = {
            "session_id": session.session_id,
            "frame_hash": session.frame_hash,
            "video_id": session.video_id,
            "request_id": request_id,
            "item_count": len(session.items),
            "product_count": len(products),
            "latency_ms": round(latency_ms, 2),
        }
        self.dispatcher.submit("sink:shop_frame", lambda: self.sink.track("shop_frame", user_id, properties))

    def record_click(
        self,
        product_url: Optional[str] = None,
        product_id: Optional[str] = None,
        query: Optional[str] = None,
        category: Optional[str] = None,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AnalyticsEvent:
        """Queue a click for the event store and the sink; returns immediately."""

        event = AnalyticsEvent(
            type=EventType.CLICK,
            category=category,
            query=query,
            product_id=product_id,
            product_url=product_url,
            user_id=user_id,
            request_id=request_id,
        )
        store = self.event_store
        if store is not None:
            self.dispatcher.submit("click", lambda: asyncio.to_thread(store.record_click, event))
        properties = event.model_dump(mode="json", exclude={"type", "user_id", "latency_ms"}, exclude_none=True)
        self.dispatcher.submit("sink:product_click", lambda: self.sink.track("product_click", user_id, properties))
        return event
