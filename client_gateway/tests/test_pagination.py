"""
Unit tests for page aggregation.
"""

import httpx
import pytest

from client_gateway.app.adapters.dispatcher import RequestDispatcher
from client_gateway.app.caching.cache_manager import CachingGateway
from client_gateway.app.caching.core import CacheKeyConfig
from client_gateway.app.pagination.aggregator import PaginationAggregator
from client_gateway.app.storage.secure_store import MemorySecureStore
from shared.errors import ApiError
from shared.test_helpers import (
    TEST_BASE_URL,
    FakeClock,
    MockBackend,
    create_test_posts,
    paged_handler,
)

POSTS_PATH = "content/admin/posts/"


class TestPaginationAggregator:
    """Test cases for PaginationAggregator."""

    @pytest.fixture
    def backend(self):
        return MockBackend()

    @pytest.fixture
    def gateway(self, backend):
        dispatcher = RequestDispatcher(TEST_BASE_URL, transport=backend.transport())
        return CachingGateway(dispatcher, MemorySecureStore(), clock=FakeClock())

    @pytest.fixture
    def paginator(self, gateway):
        return PaginationAggregator(gateway)

    @pytest.mark.asyncio
    async def test_collects_all_pages(self, paginator, backend):
        posts = create_test_posts(24)
        backend.add("GET", POSTS_PATH, paged_handler(posts, POSTS_PATH))

        result = await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert [p["id"] for p in result.items] == list(range(1, 25))
        assert result.pages_fetched == 3
        assert not result.truncated

        pages = [r.url.params["page"] for r in backend.calls("GET", POSTS_PATH)]
        assert pages == ["1", "2", "3"]
        assert all(r.url.params["page_size"] == "10" for r in backend.calls("GET", POSTS_PATH))

    @pytest.mark.asyncio
    async def test_exact_multiple_stops_on_missing_next(self, paginator, backend):
        backend.add("GET", POSTS_PATH, paged_handler(create_test_posts(20), POSTS_PATH))

        result = await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert len(result.items) == 20
        assert result.pages_fetched == 2

    @pytest.mark.asyncio
    async def test_short_page_stops_despite_next(self, paginator, backend):
        backend.add(
            "GET", POSTS_PATH,
            (200, {"results": create_test_posts(10), "next": "p2"}),
            (200, {"results": create_test_posts(3, start_id=11), "next": "p3"}),
        )

        result = await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert len(result.items) == 13
        assert result.pages_fetched == 2

    @pytest.mark.asyncio
    async def test_empty_collection(self, paginator, backend):
        backend.add("GET", POSTS_PATH, paged_handler([], POSTS_PATH))

        result = await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert result.items == []
        assert result.pages_fetched == 1

    @pytest.mark.asyncio
    async def test_endless_next_is_capped_by_count(self, paginator, backend):
        backend.add("GET", POSTS_PATH, (200, {"results": create_test_posts(10), "next": "more", "count": 25}))

        result = await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert result.truncated
        assert result.pages_fetched == 4

    @pytest.mark.asyncio
    async def test_endless_next_is_capped_by_max_pages(self, gateway, backend):
        paginator = PaginationAggregator(gateway, max_pages=5)
        backend.add("GET", POSTS_PATH, (200, {"results": create_test_posts(10), "next": "more"}))

        result = await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert result.truncated
        assert result.pages_fetched == 5
        assert len(result.items) == 50

    @pytest.mark.asyncio
    async def test_expected_total_caps_requests(self, paginator, backend):
        backend.add("GET", POSTS_PATH, (200, {"results": create_test_posts(10), "next": "more"}))

        result = await paginator.fetch_all(POSTS_PATH, page_size=10, expected_total=15)

        assert result.truncated
        assert result.pages_fetched == 3

    @pytest.mark.asyncio
    async def test_malformed_page_raises(self, paginator, backend):
        backend.add("GET", POSTS_PATH, (200, [1, 2, 3]))

        with pytest.raises(ApiError) as exc_info:
            await paginator.fetch_all(POSTS_PATH)

        assert exc_info.value.message == "Malformed page response"

    @pytest.mark.asyncio
    async def test_error_mid_walk_propagates(self, paginator, backend):
        backend.add(
            "GET", POSTS_PATH,
            (200, {"results": create_test_posts(10), "next": "p2"}),
            httpx.Response(500, json={"detail": "Server error"}),
        )

        with pytest.raises(ApiError) as exc_info:
            await paginator.fetch_all(POSTS_PATH, page_size=10)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transform_and_extra_params(self, paginator, backend):
        backend.add("GET", POSTS_PATH, paged_handler(create_test_posts(3), POSTS_PATH))

        result = await paginator.fetch_all(
            POSTS_PATH,
            {"status": "flagged"},
            page_size=10,
            transform=lambda post: post["id"],
        )

        assert result.items == [1, 2, 3]
        assert backend.requests[0].url.params["status"] == "flagged"

    @pytest.mark.asyncio
    async def test_pages_are_cached_individually(self, paginator, backend):
        backend.add("GET", POSTS_PATH, paged_handler(create_test_posts(15), POSTS_PATH))
        config = CacheKeyConfig(cache_ttl_minutes=5)

        await paginator.fetch_all(POSTS_PATH, page_size=10, config=config)
        await paginator.fetch_all(POSTS_PATH, page_size=10, config=config)

        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_invalid_page_size(self, paginator):
        with pytest.raises(ValueError):
            await paginator.fetch_all(POSTS_PATH, page_size=0)
