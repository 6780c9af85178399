"""OAuth2 client-credentials token cache for the catalog backend."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from .config import settings
from .errors import AuthConfigError, AuthExchangeError
from .models import AccessToken

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class TokenManager:
    """Caches one bearer token and coalesces concurrent refreshes.

    The first caller that finds the slot stale starts a refresh task; every
    caller arriving while it runs awaits the same task, so at most one
    credential exchange is in flight at a time.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        refresh_margin: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client_id = client_id if client_id is not None else settings.client_id
        self.client_secret = client_secret if client_secret is not None else settings.client_secret
        self.token_url = token_url or settings.token_url
        self.refresh_margin = settings.token_refresh_margin_seconds if refresh_margin is None else refresh_margin
        self._http = http_client
        self._clock = clock
        self._token: AccessToken | None = None
        self._refresh: asyncio.Task[AccessToken] | None = None
        self._lock = asyncio.Lock()

    def _cached_value(self) -> str | None:
        token = self._token
        if token is not None and token.is_fresh(self._clock(), self.refresh_margin):
            return token.value
        return None

    async def get_access_token(self) -> str:
        cached = self._cached_value()
        if cached is not None:
            logger.debug("Using cached catalog token")
            return cached

        async with self._lock:
            cached = self._cached_value()
            if cached is not None:
                return cached
            if self._refresh is None:
                self._refresh = asyncio.get_running_loop().create_task(self._exchange())
                self._refresh.add_done_callback(self._refresh_finished)
            refresh = self._refresh

        token = await asyncio.shield(refresh)
        return token.value

    def _refresh_finished(self, task: asyncio.Task[AccessToken]) -> None:
        # A cache clear while the exchange ran detaches the task; its token is discarded.
        if self._refresh is not task:
            return
        self._refresh = None
        if not task.cancelled() and task.exception() is None:
            self._token = task.result()

    async def _exchange(self) -> AccessToken:
        if not self.client_id or not self.client_secret:
            raise AuthConfigError("CATALOG_CLIENT_ID and CATALOG_CLIENT_SECRET are required")

        logger.info("Fetching new catalog access token")
        started = self._clock()
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        try:
            if self._http is not None:
                response = await self._http.post(self.token_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
                    response = await client.post(self.token_url, json=payload)
        except httpx.HTTPError as exc:
            raise AuthExchangeError(f"Token request failed: {exc}") from exc

        if not response.is_success:
            raise AuthExchangeError(f"Token request failed: {response.status_code} - {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise AuthExchangeError("Token response is not valid JSON") from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthExchangeError("Token response carries no access_token")

        expires_in = data.get("expires_in") or DEFAULT_EXPIRES_IN
        try:
            expires_in = float(expires_in)
        except (TypeError, ValueError) as exc:
            raise AuthExchangeError(f"Token response has invalid expires_in: {expires_in!r}") from exc
        if expires_in <= self.refresh_margin:
            raise AuthExchangeError(
                f"Token expires in {expires_in}s, inside the {self.refresh_margin}s refresh margin"
            )

        logger.info("Catalog token obtained, expires in %ss", int(expires_in))
        return AccessToken(value=str(data["access_token"]), expires_at=started + expires_in)

    def clear_token_cache(self) -> None:
        self._token = None
        self._refresh = None
