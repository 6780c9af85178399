"""Best-effort analytics delivery off the response path.

Jobs go onto a one-way queue drained by a single worker task. Each job gets its
own bounded exponential backoff and is dropped quietly once attempts run out;
nothing here ever raises into the code that submitted the job.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import httpx

from .config import settings

logger = logging.getLogger(__name__)

AMPLITUDE_URL = "https://api2.amplitude.com/2/httpapi"
ANONYMOUS_DEVICE = "anonymous-device"
_PLACEHOLDER_IDS = {"anonymous", "unknown", "null", "undefined"}

Job = Callable[[], Awaitable[Any]]


def normalize_id(value: Any) -> Optional[str]:
    """Return a usable identifier, or ``None`` for blanks and placeholders."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed or trimmed.lower() in _PLACEHOLDER_IDS:
        return None
    return trimmed


class AnalyticsSink(Protocol):
    async def track(
        self,
        event_name: str,
        user_id: Any,
        properties: Dict[str, Any],
        user_properties: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class NullSink:
    async def track(
        self,
        event_name: str,
        user_id: Any,
        properties: Dict[str, Any],
        user_properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        return None


class AmplitudeSink:
    """Uploads single events to the Amplitude HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        app_env: Optional[str] = None,
        enabled: Optional[bool] = None,
        url: str = AMPLITUDE_URL,
    ) -> None:
        self.api_key = settings.amplitude_api_key if api_key is None else api_key
        self.app_env = app_env or settings.app_env
        self.enabled = (settings.use_amplitude if enabled is None else enabled) and bool(self.api_key)
        self.url = url
        self._http = http_client

    def build_event(
        self,
        event_name: str,
        user_id: Any,
        properties: Dict[str, Any],
        user_properties: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "event_type": event_name,
            "event_properties": {"app_env": self.app_env, **properties},
        }
        normalized_user = normalize_id(user_id)
        if normalized_user:
            event["user_id"] = normalized_user
        else:
            event["device_id"] = normalize_id(properties.get("device_id")) or ANONYMOUS_DEVICE
        if user_properties:
            event["user_properties"] = user_properties
        return event

    async def track(
        self,
        event_name: str,
        user_id: Any,
        properties: Dict[str, Any],
        user_properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not event_name or not self.enabled:
            return
        body = {"api_key": self.api_key, "events": [self.build_event(event_name, user_id, properties, user_properties)]}
        if self._http is not None:
            response = await self._http.post(self.url, json=body)
        else:
            async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                response = await client.post(self.url, json=body)
        response.raise_for_status()


class AnalyticsDispatcher:
    def __init__(
        self,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        queue_size: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_retries = settings.analytics_max_retries if max_retries is None else max_retries
        self.base_delay = settings.analytics_base_delay_seconds if base_delay is None else base_delay
        size = settings.analytics_queue_size if queue_size is None else queue_size
        self._queue: asyncio.Queue[Tuple[str, Job]] = asyncio.Queue(maxsize=size)
        self._worker: asyncio.Task[None] | None = None
        self._sleep = sleep

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._worker = asyncio.get_running_loop().create_task(self._run())

    def submit(self, name: str, job: Job) -> bool:
        """Enqueue a job without waiting. Returns ``False`` if it was dropped."""

        try:
            self.start()
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            logger.warning("Analytics queue full, dropping %s", name)
            return False
        except RuntimeError as exc:
            logger.warning("Analytics dispatcher unavailable, dropping %s: %s", name, exc)
            return False
        return True

    async def _run(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await self._deliver(name, job)
            finally:
                self._queue.task_done()

    async def _deliver(self, name: str, job: Job) -> bool:
        for attempt in range(self.max_retries + 1):
            try:
                await job()
                return True
            except Exception as exc:
                logger.debug("Analytics job %s failed (attempt %s): %s", name, attempt + 1, exc)
            if attempt < self.max_retries:
                await self._sleep(self.base_delay * (2 ** attempt))
        logger.debug("Giving up on analytics job %s", name)
        return False

    async def drain(self) -> None:
        if self._worker is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
