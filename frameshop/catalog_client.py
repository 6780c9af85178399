"""Tool-call client for the remote product catalog."""
from __future__ import annotations

import itertools
import json
import logging
from time import perf_counter
from typing import Any, Dict, List, Optional

import httpx

from .auth import TokenManager
from .config import settings
from .errors import (
    FrameshopError,
    ProtocolApplicationError,
    ProtocolParseError,
    ProtocolTransportError,
)
from .models import Product
from .normalizer import extract_product_list, normalize_product

logger = logging.getLogger(__name__)

SEARCH_TOOL = "search_global_products"


class CatalogClient:
    """Executes JSON-RPC ``tools/call`` requests against the catalog endpoint.

    No retries happen here; callers decide how to treat failures.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        endpoint: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.token_manager = token_manager
        self.endpoint = endpoint or settings.mcp_endpoint
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def execute_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        token = await self.token_manager.get_access_token()
        envelope = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        try:
            response = await self._http.post(self.endpoint, json=envelope, headers=headers)
        except httpx.HTTPError as exc:
            raise ProtocolTransportError(f"Catalog request failed: {exc}") from exc

        if not response.is_success:
            raise ProtocolTransportError(
                f"Catalog request failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolParseError("Catalog response is not valid JSON") from exc
        if not isinstance(body, dict):
            raise ProtocolParseError(f"Catalog response is not an object: {type(body).__name__}")

        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            raise ProtocolApplicationError(f"Catalog error: {message or json.dumps(error)}", error=error)
        return body.get("result")

    async def search_products(self, query: str, limit: int = 5) -> List[Product]:
        t0 = perf_counter()
        result = await self.execute_tool(SEARCH_TOOL, {"query": query, "context": "", "limit": limit})

        content = result.get("content") if isinstance(result, dict) else None
        first = content[0] if isinstance(content, list) and content else None
        if not isinstance(first, dict) or first.get("type") != "text":
            logger.info("search q=%r returned no text content", query)
            return []

        try:
            payload = json.loads(first.get("text") or "")
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to parse catalog payload for q=%r: %r", query, first.get("text"))
            raise ProtocolParseError(f"Catalog payload for {query!r} is not valid JSON") from exc

        products = [normalize_product(item) for item in extract_product_list(payload)]
        logger.info(
            "search q=%r limit=%s hits=%s took=%.2fms",
            query,
            limit,
            len(products),
            (perf_counter() - t0) * 1000,
        )
        return products

    async def test_connection(self) -> bool:
        """Run a sample search and report whether the catalog answered."""

        try:
            results = await self.search_products("black tee white logo", 3)
        except FrameshopError as exc:
            logger.error("Catalog connection test failed: %s", exc)
            return False
        logger.info("Catalog connection test succeeded with %s results", len(results))
        return True
