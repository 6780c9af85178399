"""End-to-end tests for the frame pipeline with faked collaborators."""

from datetime import datetime, timedelta, timezone

import pytest

from frameshop.analytics import AnalyticsDispatcher
from frameshop.errors import VisionError
from frameshop.models import Product
from frameshop.orchestrator import SearchOrchestrator
from frameshop.pipeline import FramePipeline, coerce_items
from frameshop.session_cache import SessionCache, SqlSessionStore


class FakeVision:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = 0

    async def identify_items(self, frame_bytes):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.items


class FakeCatalog:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def search_products(self, query, limit=5):
        self.calls.append(query)
        return list(self.responses.get(query, []))


class RecordingSink:
    def __init__(self):
        self.events = []

    async def track(self, event_name, user_id, properties, user_properties=None):
        self.events.append((event_name, user_id, properties))


@pytest.fixture
def catalog():
    return FakeCatalog(
        {
            "black leather jacket": [
                Product(id="p1", title="Leather Jacket", product_url="https://shop/p1"),
                Product(id="p2", title="Biker Jacket", product_url="https://shop/p2"),
            ],
            "white sneakers": [
                Product(id="p2", title="Biker Jacket", product_url="https://shop/p2"),
                Product(id="p3", title="Court Sneaker", product_url="https://shop/p3"),
            ],
        }
    )


@pytest.fixture
def vision():
    return FakeVision(
        [
            {"query": "black leather jacket", "limit": 3, "category": "jackets"},
            {"query": "white sneakers", "category": "shoes"},
        ]
    )


def build_pipeline(db, event_store, clock, catalog, vision, **kwargs):
    return FramePipeline(
        orchestrator=SearchOrchestrator(catalog),
        session_cache=SessionCache(SqlSessionStore(db), max_age_seconds=300, clock=clock),
        vision=vision,
        event_store=event_store,
        dispatcher=AnalyticsDispatcher(max_retries=0),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_miss_then_hit_for_same_frame_hash(db, event_store, clock, catalog, vision):
    pipeline = build_pipeline(db, event_store, clock, catalog, vision)

    first = await pipeline.process_frame("h1", frame_bytes=b"jpeg", video_id="vid", timestamp_sec=3.0)

    assert first.cached is False
    assert [p.id for p in first.products] == ["p1", "p2", "p3"]
    assert [p.search_query for p in first.products] == ["black leather jacket", "black leather jacket", "white sneakers"]
    assert [(c.query, c.count) for c in first.per_request_counts] == [("black leather jacket", 2), ("white sneakers", 2)]
    assert first.session.frame_hash == "h1"
    assert vision.calls == 1 and len(catalog.calls) == 2

    clock.advance(120)
    second = await pipeline.process_frame("h1", frame_bytes=b"jpeg")

    assert second.cached is True
    assert second.session.session_id == first.session.session_id
    assert [p.id for p in second.products] == ["p1", "p2", "p3"]
    assert vision.calls == 1 and len(catalog.calls) == 2
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_stale_session_triggers_full_run(db, event_store, clock, catalog, vision):
    pipeline = build_pipeline(db, event_store, clock, catalog, vision)
    first = await pipeline.process_frame("h1", frame_bytes=b"jpeg")
    assert first.session.created_at == clock()

    clock.advance(301)
    response = await pipeline.process_frame("h1", frame_bytes=b"jpeg")

    assert response.cached is False
    assert vision.calls == 2
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_supplied_items_skip_vision(db, event_store, clock, catalog):
    vision = FakeVision()
    pipeline = build_pipeline(db, event_store, clock, catalog, vision)

    response = await pipeline.process_frame("h2", items=[{"query": "white sneakers"}, {"query": "   "}])

    assert vision.calls == 0
    assert [c.query for c in response.per_request_counts] == ["white sneakers"]
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_vision_failure_propagates_without_search(db, event_store, clock, catalog):
    pipeline = build_pipeline(db, event_store, clock, catalog, FakeVision(error=VisionError("model timeout")))

    with pytest.raises(VisionError):
        await pipeline.process_frame("h3", frame_bytes=b"jpeg")

    assert catalog.calls == []
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_impressions_and_latency_recorded_in_background(db, event_store, clock, catalog, vision):
    sink = RecordingSink()
    pipeline = build_pipeline(db, event_store, clock, catalog, vision, sink=sink)

    response = await pipeline.process_frame("h4", frame_bytes=b"jpeg", user_id="user-1", request_id="req-1")
    await pipeline.dispatcher.drain()

    since = datetime.now(timezone.utc) - timedelta(hours=1)
    rows = {key: (imps, clicks) for key, imps, clicks in event_store.boost_rows("category", since)}
    assert rows == {"jackets": (2, 0), "shoes": (1, 0)}
    assert len(event_store.latency_samples(since)) == 1
    assert sink.events[0][0] == "shop_frame"
    assert sink.events[0][2]["session_id"] == response.session.session_id
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_record_click_reaches_store_and_sink(db, event_store, clock, catalog, vision):
    sink = RecordingSink()
    pipeline = build_pipeline(db, event_store, clock, catalog, vision, sink=sink)

    pipeline.record_click(product_url="https://shop/p3", query="white sneakers", category="shoes", user_id="u9")
    await pipeline.dispatcher.drain()

    since = datetime.now(timezone.utc) - timedelta(hours=1)
    assert event_store.boost_rows("category", since) == [("shoes", 0, 1)]
    assert sink.events == [
        (
            "product_click",
            "u9",
            {"category": "shoes", "query": "white sneakers", "product_url": "https://shop/p3", "ts": sink.events[0][2]["ts"]},
        )
    ]
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_ranker_receives_boosts(db, event_store, clock, catalog, vision):
    seen = {}

    def ranker(products, boosts):
        seen["boosts"] = boosts
        return list(reversed(products))

    pipeline = build_pipeline(db, event_store, clock, catalog, vision, ranker=ranker)
    response = await pipeline.process_frame("h5", frame_bytes=b"jpeg")

    assert [p.id for p in response.products] == ["p3", "p2", "p1"]
    assert seen["boosts"].categories == {}
    await pipeline.dispatcher.aclose()


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_response(event_store, clock, catalog, vision):
    class ReadOnlyStore:
        def find_latest(self, frame_hash, since):
            return None

        def insert(self, session):
            raise OSError("disk full")

    pipeline = FramePipeline(
        orchestrator=SearchOrchestrator(catalog),
        session_cache=SessionCache(ReadOnlyStore(), clock=clock),
        vision=vision,
        dispatcher=AnalyticsDispatcher(max_retries=0),
    )

    response = await pipeline.process_frame("h6", frame_bytes=b"jpeg")

    assert response.cached is False and len(response.products) == 3
    await pipeline.dispatcher.aclose()


def test_coerce_items_skips_invalid_entries():
    requests = coerce_items([{"query": "red scarf", "limit": 20}, {"limit": 2}, {"query": ""}])

    assert [(r.query, r.limit) for r in requests] == [("red scarf", 8)]
