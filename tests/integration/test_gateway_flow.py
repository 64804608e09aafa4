"""
Integration tests for the complete gateway flow.
"""

import json

import httpx
import pytest

from client_gateway.app.auth.session_store import SESSION_KEY, USER_KEY, SessionState
from client_gateway.app.main import GatewayClient
from client_gateway.app.domain.optimistic import VersionedState
from client_gateway.app.storage.secure_store import FileSecureStore, MemorySecureStore
from shared.config import GatewaySettings
from shared.errors import AuthenticationError
from shared.secrets_manager import SecretsCipher
from shared.test_helpers import (
    TEST_BASE_URL,
    FakeClock,
    MockBackend,
    create_test_posts,
    create_test_user,
    login_response,
    paged_handler,
)


class TestGatewayFlow:
    """Integration tests for login, cached reads and logout."""

    @pytest.fixture
    def backend(self):
        backend = MockBackend()
        backend.add("POST", "auth/login/", login_response(token="tok-123", user=create_test_user(user_id=7)))
        backend.add("POST", "auth/logout/", httpx.Response(204))
        backend.add("GET", "users/my-profile/", (200, {"id": 7, "bio": "hello"}))
        return backend

    @pytest.fixture
    def settings(self):
        return GatewaySettings(api_base_url=TEST_BASE_URL, default_page_size=10)

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self):
        return MemorySecureStore()

    @pytest.fixture
    def client(self, settings, store, backend, clock):
        return GatewayClient(settings, store=store, transport=backend.transport(), clock=clock)

    @pytest.mark.asyncio
    async def test_login_cached_read_logout(self, client, backend, store, clock):
        async with client:
            assert client.session.state == SessionState.LOGGED_OUT

            assert await client.session.log_in("alex_walker", "secret") is None
            assert client.session.cache_scope() == "user_7"

            first = await client.get("users/my-profile/", cache_ttl_minutes=30)
            clock.advance(minutes=10)
            second = await client.get("users/my-profile/", cache_ttl_minutes=30)

            assert first == second == {"id": 7, "bio": "hello"}
            profile_calls = backend.calls("GET", "users/my-profile/")
            assert len(profile_calls) == 1
            assert profile_calls[0].headers["Authorization"] == "Token tok-123"
            assert await store.keys("api_cache:user_7:") != []

            assert await client.session.log_out() is None

            assert client.session.state == SessionState.LOGGED_OUT
            assert await store.get(SESSION_KEY) is None
            assert await store.get(USER_KEY) is None
            assert await store.keys("api_cache:user_7:") == []

    @pytest.mark.asyncio
    async def test_failed_relogin_does_not_serve_previous_user_cache(self, client, backend, store):
        async with client:
            await client.session.log_in("alex_walker", "secret")
            await client.get("users/my-profile/", cache_ttl_minutes=60)

            backend.add("POST", "auth/login/", (400, {"detail": "Invalid credentials."}))
            backend.add("GET", "users/my-profile/", (401, {"detail": "Authentication credentials were not provided."}))
            assert await client.session.log_in("someone_else", "wrong") == "Invalid credentials."

            with pytest.raises(AuthenticationError):
                await client.get("users/my-profile/", cache_ttl_minutes=60)

            assert "Authorization" not in backend.calls("GET", "users/my-profile/")[-1].headers
            assert await store.keys("api_cache:user_7:") == []

    @pytest.mark.asyncio
    async def test_guest_and_user_caches_do_not_mix(self, client, backend, store):
        backend.add("GET", "content/posts/", (200, {"results": [], "next": None}))

        async with client:
            await client.get("content/posts/", cache_ttl_minutes=5)
            await client.session.log_in("alex_walker", "secret")
            await client.get("content/posts/", cache_ttl_minutes=5)

        assert len(backend.calls("GET", "content/posts/")) == 2
        assert len(await store.keys("api_cache:guest:")) == 1
        assert len(await store.keys("api_cache:user_7:")) == 1

    @pytest.mark.asyncio
    async def test_session_survives_restart_with_file_store(self, settings, backend, tmp_path):
        path = str(tmp_path / "store.json")
        cipher = SecretsCipher("integration-key")

        async with GatewayClient(settings, store=FileSecureStore(path, cipher),
                                 transport=backend.transport()) as client:
            await client.session.log_in("alex_walker", "secret")

        async with GatewayClient(settings, store=FileSecureStore(path, cipher),
                                 transport=backend.transport()) as restarted:
            assert restarted.session.state == SessionState.LOGGED_IN
            assert restarted.session.user["id"] == 7
            await restarted.get("users/my-profile/")

        assert backend.requests[-1].headers["Authorization"] == "Token tok-123"

    @pytest.mark.asyncio
    async def test_expired_token_reported_by_caller(self, client, backend, store):
        backend.add("GET", "users/my-profile/", (401, {"detail": "Invalid token."}))

        async with client:
            await client.session.log_in("alex_walker", "secret")

            with pytest.raises(AuthenticationError):
                await client.get("users/my-profile/")
            await client.session.handle_auth_failure()

            assert client.session.state == SessionState.LOGGED_OUT
            assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_fetch_all_uses_default_page_size(self, client, backend):
        posts = create_test_posts(24)
        backend.add("GET", "content/admin/posts/", paged_handler(posts, "content/admin/posts/"))

        async with client:
            result = await client.fetch_all("content/admin/posts/")

        assert len(result.items) == 24
        assert result.pages_fetched == 3

    @pytest.mark.asyncio
    async def test_optimistic_like_rolls_back_on_failure(self, backend):
        notifications = []
        backend.add("POST", "content/posts/1/like/", (400, {"detail": "Already liked."}))
        client = GatewayClient(
            GatewaySettings(api_base_url=TEST_BASE_URL),
            store=MemorySecureStore(),
            transport=backend.transport(),
            notifier=lambda level, message: notifications.append((level, message)),
        )
        liked = VersionedState(False)

        async with client:
            result, rolled_back = await client.optimistic.run_versioned(
                liked, True,
                lambda: client.gateway.mutate("POST", "content/posts/1/like/", invalidate=["content/posts/"]),
            )

        assert result is None
        assert rolled_back
        assert liked.value is False
        assert notifications == [("error", "Operation failed: Already liked.")]

    @pytest.mark.asyncio
    async def test_user_blob_stored_as_json(self, client, store):
        async with client:
            await client.session.log_in("alex_walker", "secret")
            await client.session.set_user_verify(True)

            assert json.loads(await store.get(USER_KEY))["is_verified"] is True
