"""SQLAlchemy schema and engine helpers for sessions and analytics events."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "sessions"
    __table_args__ = (Index("ix_sessions_frame_hash_created_at", "frame_hash", "created_at"),)

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    video_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    timestamp_sec: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    frame_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    items: Mapped[Any] = mapped_column(JSON, default=list, nullable=False)
    results: Mapped[Any] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AnalyticsEventRecord(Base):
    __tablename__ = "analytics_events"
    __table_args__ = (
        Index("ix_analytics_events_type_ts", "type", "ts"),
        Index("ix_analytics_events_category_query_ts", "category", "query", "ts"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, index=True)
    query: Mapped[Optional[str]] = mapped_column(Text, nullable=True, index=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    product_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    latency_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Database:
    """Engine plus session factory. Each ``session()`` block is one transaction."""

    def __init__(self, url: Optional[str] = None) -> None:
        url = url or settings.database_url
        if url.startswith("sqlite"):
            # Store calls run on worker threads via asyncio.to_thread.
            kwargs: dict = {"connect_args": {"check_same_thread": False}}
            if url in {"sqlite://", "sqlite:///:memory:"}:
                kwargs["poolclass"] = StaticPool
            self.engine: Engine = create_engine(url, **kwargs)
        else:
            self.engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("Ensured schema on %s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session(self) -> Iterator[Session]:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()
