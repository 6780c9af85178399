"""Tests for the frame-hash session cache and its store backends."""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import redis

from frameshop.config import Settings
from frameshop.models import Product, SearchRequest, SearchResult, Session
from frameshop.session_cache import (
    RedisSessionStore,
    SessionCache,
    SqlSessionStore,
    get_session_store,
)


@pytest.fixture(params=["sql", "redis"])
def store(request, db):
    if request.param == "sql":
        return SqlSessionStore(db)
    return RedisSessionStore(fakeredis.FakeRedis(), prefix="test:session")


def make_session(session_id, frame_hash, created_at, query="blue hoodie"):
    request = SearchRequest(query=query, limit=2, category="tops")
    return Session(
        session_id=session_id,
        video_id="vid-1",
        timestamp_sec=12.5,
        frame_hash=frame_hash,
        items=[request],
        results=[SearchResult(request=request, products=[Product(title="Hoodie", product_url="u1", min_price="30.00")])],
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_lookup_respects_freshness_window(store, clock):
    cache = SessionCache(store, clock=clock)
    session = make_session("s1", "h1", clock())
    assert await cache.store(session) is True

    clock.advance(299)
    found = await cache.lookup("h1", max_age_seconds=300)
    assert found is not None and found.session_id == "s1"

    clock.advance(2)
    assert await cache.lookup("h1", max_age_seconds=300) is None


@pytest.mark.asyncio
async def test_lookup_round_trips_session_fields(store, clock):
    cache = SessionCache(store, clock=clock)
    session = make_session("s1", "h1", clock())
    await cache.store(session)

    found = await cache.lookup("h1")

    assert found == session


@pytest.mark.asyncio
async def test_lookup_returns_most_recent_matching_session(store, clock):
    cache = SessionCache(store, clock=clock)
    start = clock()
    await cache.store(make_session("newer", "h1", start + timedelta(seconds=30)))
    await cache.store(make_session("older", "h1", start))
    await cache.store(make_session("other-hash", "h2", start + timedelta(seconds=60)))
    clock.advance(60)

    found = await cache.lookup("h1")

    assert found.session_id == "newer"


@pytest.mark.asyncio
async def test_different_hash_is_a_miss(store, clock):
    cache = SessionCache(store, clock=clock)
    await cache.store(make_session("s1", "h1", clock()))

    assert await cache.lookup("h1x") is None


@pytest.mark.asyncio
async def test_store_is_append_only(store, clock):
    cache = SessionCache(store, clock=clock)
    await cache.store(make_session("first", "h1", clock()))
    clock.advance(5)
    await cache.store(make_session("second", "h1", clock(), query="grey hoodie"))

    assert (await cache.lookup("h1")).session_id == "second"
    assert store.find_latest("h1", clock() - timedelta(seconds=10)).session_id == "second"


class BrokenStore:
    def find_latest(self, frame_hash, since):
        raise redis.ConnectionError("store down")

    def insert(self, session):
        raise redis.ConnectionError("store down")


def test_now_reads_the_injected_clock_as_utc(db):
    cache = SessionCache(SqlSessionStore(db), clock=lambda: datetime(2024, 5, 1, 12, 0))

    assert cache.now() == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_store_failures_never_reach_the_caller(clock):
    cache = SessionCache(BrokenStore(), clock=clock)

    assert await cache.lookup("h1") is None
    assert await cache.store(make_session("s1", "h1", clock())) is False


def test_get_session_store_falls_back_to_sql_without_redis(db):
    config = Settings(session_backend="redis", redis_host="127.0.0.1", redis_port=1)

    assert isinstance(get_session_store(config, db=db), SqlSessionStore)


def test_get_session_store_defaults_to_sql(db):
    assert isinstance(get_session_store(Settings(session_backend="sql"), db=db), SqlSessionStore)
