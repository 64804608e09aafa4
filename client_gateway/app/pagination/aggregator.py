"""
Aggregation of paged endpoints into one collection.
"""

import math
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from shared.errors import ApiError
from shared.logging import get_logger

from ..caching.cache_manager import CachingGateway
from ..caching.core import CacheKeyConfig

T = TypeVar("T")

DEFAULT_MAX_PAGES = 1000


class PagedResult(BaseModel, Generic[T]):
    """One server page."""
    results: List[T]
    next: Optional[str] = None
    count: Optional[int] = None


class AggregatedResult(BaseModel, Generic[T]):
    """Concatenated pages; ``truncated`` is set when the page cap was hit."""
    items: List[T]
    pages_fetched: int
    truncated: bool = False


class PaginationAggregator:
    """
    Walks a paged endpoint through the gateway.

    Aggregation stops when the server reports no next page, when a page is
    shorter than the requested page size, or when a page is empty. A hard
    page cap guards against servers that keep advertising a next page.
    """

    def __init__(self, gateway: CachingGateway, *, page_param: str = "page",
                 page_size_param: str = "page_size", max_pages: int = DEFAULT_MAX_PAGES):
        self.gateway = gateway
        self.page_param = page_param
        self.page_size_param = page_size_param
        self.max_pages = max_pages
        self.logger = get_logger("gateway.pagination")

    async def fetch_page(self, path: str, page: int, page_size: int,
                         params: Optional[Dict[str, Any]] = None,
                         config: Optional[CacheKeyConfig] = None) -> PagedResult:
        """
        Fetch a single page.

        Raises:
            ApiError: If the response is not a ``{results, next}`` page
        """
        page_params = dict(params or {})
        page_params[self.page_param] = page
        page_params[self.page_size_param] = page_size

        data = await self.gateway.get(path, page_params, config)
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise ApiError(200, "Malformed page response", details={"path": path, "page": page})
        return PagedResult(
            results=data["results"],
            next=data.get("next"),
            count=data.get("count") if isinstance(data.get("count"), int) else None,
        )

    def _page_cap(self, expected_total: Optional[int], page_size: int) -> int:
        if expected_total is None:
            return self.max_pages
        return min(math.ceil(expected_total / page_size) + 1, self.max_pages)

    async def fetch_all(self, path: str, params: Optional[Dict[str, Any]] = None, *,
                        page_size: int = 10, start_page: int = 1,
                        expected_total: Optional[int] = None,
                        config: Optional[CacheKeyConfig] = None,
                        transform: Optional[Callable[[Any], T]] = None) -> AggregatedResult:
        """Fetch every page of ``path`` and concatenate the results."""
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        items: List[Any] = []
        page = start_page
        pages_fetched = 0
        cap = self._page_cap(expected_total, page_size)

        while True:
            if pages_fetched >= cap:
                self.logger.warning(
                    "Pagination cap reached; returning partial collection",
                    path=path,
                    pages=pages_fetched,
                    items=len(items)
                )
                return AggregatedResult(items=items, pages_fetched=pages_fetched, truncated=True)

            result = await self.fetch_page(path, page, page_size, params, config)
            pages_fetched += 1

            if expected_total is None and result.count is not None:
                expected_total = result.count
                cap = self._page_cap(expected_total, page_size)

            if transform is not None:
                items.extend(transform(item) for item in result.results)
            else:
                items.extend(result.results)

            if not result.next or len(result.results) < page_size:
                break
            page += 1

        self.logger.debug("Pagination complete", path=path, pages=pages_fetched, items=len(items))
        return AggregatedResult(items=items, pages_fetched=pages_fetched)
