"""Frame-fingerprint session cache over a durable append-only store.

Two store backends share the :class:`SessionStore` protocol: the SQL store
(composite index on ``(frame_hash, created_at)``) and a Redis store keeping one
sorted set per frame hash scored by creation time. Neither ever overwrites or
expires a session; staleness is decided at lookup time.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import redis
from sqlalchemy import select

from .config import Settings, settings
from .database import Database, SessionRecord, as_utc
from .models import Session, utcnow

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def find_latest(self, frame_hash: str, since: datetime) -> Optional[Session]: ...

    def insert(self, session: Session) -> None: ...


@dataclass
class SqlSessionStore:
    db: Database

    def find_latest(self, frame_hash: str, since: datetime) -> Optional[Session]:
        stmt = (
            select(SessionRecord)
            .where(SessionRecord.frame_hash == frame_hash, SessionRecord.created_at >= since)
            .order_by(SessionRecord.created_at.desc())
            .limit(1)
        )
        with self.db.session() as s:
            row = s.scalars(stmt).first()
            if row is None:
                return None
            return Session(
                session_id=row.session_id,
                video_id=row.video_id,
                timestamp_sec=row.timestamp_sec,
                frame_hash=row.frame_hash,
                items=row.items or [],
                results=row.results or [],
                created_at=as_utc(row.created_at),
            )

    def insert(self, session: Session) -> None:
        data = session.model_dump(mode="json")
        with self.db.session() as s:
            s.add(
                SessionRecord(
                    session_id=session.session_id,
                    video_id=session.video_id,
                    timestamp_sec=session.timestamp_sec,
                    frame_hash=session.frame_hash,
                    items=data["items"],
                    results=data["results"],
                    created_at=session.created_at,
                )
            )


@dataclass
class RedisSessionStore:
    client: redis.Redis
    prefix: str = settings.session_key_prefix

    def _key(self, frame_hash: str) -> str:
        return f"{self.prefix}:{frame_hash}"

    def find_latest(self, frame_hash: str, since: datetime) -> Optional[Session]:
        members = self.client.zrevrangebyscore(
            self._key(frame_hash), "+inf", since.timestamp(), start=0, num=1
        )
        if not members:
            return None
        return Session.model_validate_json(members[0])

    def insert(self, session: Session) -> None:
        self.client.zadd(self._key(session.frame_hash), {session.model_dump_json(): session.created_at.timestamp()})


def get_session_store(config: Settings = settings, db: Optional[Database] = None) -> SessionStore:
    if config.session_backend == "redis":
        try:
            client = redis.Redis(host=config.redis_host, port=config.redis_port, decode_responses=False)
            client.ping()
            logger.info("Using Redis session store at %s:%s", config.redis_host, config.redis_port)
            return RedisSessionStore(client, prefix=config.session_key_prefix)
        except redis.RedisError:
            logger.warning("Redis not available, using SQL session store")
    if db is None:
        db = Database(config.database_url)
        db.create_tables()
    return SqlSessionStore(db)


class SessionCache:
    """Read-through view over a :class:`SessionStore`.

    Store failures never reach the caller: a failed read is a miss and a failed
    write is logged and reported as ``False``.
    """

    def __init__(
        self,
        store: SessionStore,
        max_age_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backend = store
        self.max_age_seconds = settings.session_max_age_seconds if max_age_seconds is None else max_age_seconds
        self._clock = clock

    def now(self) -> datetime:
        return as_utc(self._clock())

    async def lookup(self, frame_hash: str, max_age_seconds: Optional[float] = None) -> Optional[Session]:
        max_age = self.max_age_seconds if max_age_seconds is None else max_age_seconds
        since = self.now() - timedelta(seconds=max_age)
        try:
            session = await asyncio.to_thread(self.backend.find_latest, frame_hash, since)
        except Exception as exc:
            logger.warning("Session lookup failed for frame_hash=%s, treating as miss: %s", frame_hash, exc)
            return None
        logger.debug("session lookup frame_hash=%s hit=%s", frame_hash, session is not None)
        return session

    async def store(self, session: Session) -> bool:
        try:
            await asyncio.to_thread(self.backend.insert, session)
        except Exception as exc:
            logger.warning("Session store failed for session_id=%s: %s", session.session_id, exc)
            return False
        logger.debug("session stored session_id=%s frame_hash=%s", session.session_id, session.frame_hash)
        return True
