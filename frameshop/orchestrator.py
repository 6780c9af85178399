"""Bounded fan-out of item searches with per-query failure isolation."""
from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Iterable, List, Optional, Protocol, Sequence

from .config import settings
from .models import DispatchOutcome, Product, QueryCount, SearchRequest, SearchResult

logger = logging.getLogger(__name__)


class ProductSearcher(Protocol):
    async def search_products(self, query: str, limit: int = 5) -> List[Product]: ...


def merge_results(results: Iterable[SearchResult]) -> List[Product]:
    """Flatten results in request order, dropping repeated product URLs.

    The first occurrence of a URL wins. Products without a URL are always kept.
    Every surviving product is tagged with the query that produced it.
    """

    seen_urls: set[str] = set()
    merged: List[Product] = []
    for result in results:
        for product in result.products:
            if product.product_url is not None:
                if product.product_url in seen_urls:
                    continue
                seen_urls.add(product.product_url)
            merged.append(product.model_copy(update={"search_query": result.request.query}))
    return merged


class SearchOrchestrator:
    def __init__(self, client: ProductSearcher, max_requests: Optional[int] = None) -> None:
        self.client = client
        self.max_requests = max_requests or settings.max_search_requests

    async def _search_one(self, request: SearchRequest) -> List[Product]:
        return await self.client.search_products(request.query, request.limit)

    async def dispatch(self, requests: Sequence[SearchRequest]) -> DispatchOutcome:
        accepted = list(requests[: self.max_requests])
        if len(requests) > len(accepted):
            logger.debug("Ignoring %s search requests beyond the first %s", len(requests) - len(accepted), self.max_requests)

        t0 = perf_counter()
        outcomes = await asyncio.gather(*(self._search_one(req) for req in accepted), return_exceptions=True)

        results: List[SearchResult] = []
        for request, outcome in zip(accepted, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Search failed for q=%r: %s", request.query, outcome)
                outcome = []
            results.append(SearchResult(request=request, products=outcome))

        products = merge_results(results)
        counts = [QueryCount(query=r.request.query, count=len(r.products)) for r in results]
        logger.info(
            "dispatch requests=%s unique_products=%s took=%.2fms",
            len(accepted),
            len(products),
            (perf_counter() - t0) * 1000,
        )
        return DispatchOutcome(products=products, per_request_counts=counts, results=results)
