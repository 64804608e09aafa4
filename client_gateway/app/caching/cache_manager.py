"""
TTL cache gateway in front of the request dispatcher.
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from shared.errors import StorageError, TransportError
from shared.logging import get_logger
from shared.metrics import GatewayMetrics
from shared.retry import RetryConfig, RetryError, call_with_retry

from ..adapters.dispatcher import RequestDispatcher
from ..storage.secure_store import SecureKeyValueStore
from .coalescer import RequestCoalescer
from .core import CacheEntry, CacheKeyConfig, make_request_identity, split_path_params


class CachingGateway:
    """
    Decides cache hit, miss or refresh for every read and persists
    successful responses with a timestamp.

    - skip_cache: straight to the network, the cache is not touched
    - force_refresh or a zero TTL: skip the read, write the fresh result back
    - otherwise a stored entry younger than the TTL is returned as is

    A failed fetch never evicts the stored entry and never falls back to it;
    the error goes to the caller. Cache storage failures only cost
    performance, so they are logged and treated as a miss.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        store: SecureKeyValueStore,
        *,
        scope_provider: Optional[Callable[[], str]] = None,
        namespace: str = "api_cache",
        clock: Callable[[], float] = time.time,
        metrics: Optional[GatewayMetrics] = None,
        retry_config: Optional[RetryConfig] = None,
        coalesce: bool = True,
    ):
        self._dispatcher = dispatcher
        self._store = store
        self._scope_provider = scope_provider or (lambda: "guest")
        self.namespace = namespace
        self._clock = clock
        self.metrics = metrics or dispatcher.metrics
        self.retry_config = retry_config or RetryConfig(max_attempts=1)
        self.coalesce = coalesce
        self._coalescer = RequestCoalescer(metrics=self.metrics)
        self.logger = get_logger("gateway.cache")

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    def _scope_prefix(self, scope: Optional[str] = None) -> str:
        return f"{self.namespace}:{scope or self._scope_provider()}:"

    def cache_key(self, path: str, params: Optional[Dict[str, Any]] = None, method: str = "GET") -> str:
        """Canonical cache key for a request in the current scope."""
        return self._scope_prefix() + make_request_identity(method, path, params)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None,
                  config: Optional[CacheKeyConfig] = None) -> Any:
        """Read ``path`` through the cache according to ``config``."""
        config = config or CacheKeyConfig()
        path, params = split_path_params(path, params)
        key = self.cache_key(path, params)

        if config.skip_cache:
            self.metrics.record_cache_lookup("bypass")
            self.logger.debug("Cache bypassed", key=key)
            return await self._fetch(path, params)

        if not config.reads_cache:
            self.metrics.record_cache_lookup("refresh")
            self.logger.info("Cache refresh", key=key, force_refresh=config.force_refresh)
            return await self._fetch_through(key, path, params, config)

        entry = await self._read_entry(key)
        now = self._clock()
        if entry is not None and entry.is_fresh(now, config.cache_ttl_minutes):
            self.metrics.record_cache_lookup("hit")
            self.logger.debug("Cache hit", key=key, age=round(entry.age_seconds(now), 1))
            return entry.payload

        if entry is None:
            self.metrics.record_cache_lookup("miss")
            self.logger.info("Cache miss", key=key)
        else:
            self.metrics.record_cache_lookup("stale")
            self.logger.info("Cache expired", key=key, age=round(entry.age_seconds(now), 1))
        return await self._fetch_through(key, path, params, config)

    async def get_cached(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[CacheEntry]:
        """
        Return the stored entry regardless of age, without any network call.

        Lets callers show possibly-stale data next to a failed refresh.
        """
        path, params = split_path_params(path, params)
        return await self._read_entry(self.cache_key(path, params))

    async def mutate(self, method: str, path: str, json: Any = None,
                     params: Optional[Dict[str, Any]] = None,
                     invalidate: Iterable[str] = ()) -> Any:
        """
        Send an uncached write and drop cached reads it makes stale.

        Args:
            invalidate: path prefixes whose cached reads are removed after
                the write succeeds

        The server has applied the write once a response arrives, so a
        storage failure while invalidating is logged and never raised.
        """
        response = await self._dispatcher.request(method, path, params=params, json=json)
        for prefix in invalidate:
            try:
                await self.invalidate_prefix(prefix)
            except StorageError as e:
                self.metrics.record_storage_error("invalidate")
                self.logger.error(
                    "Cache invalidation failed after write",
                    method=method.upper(),
                    path=path,
                    prefix=prefix,
                    error=e.message
                )
        return response.data

    async def _fetch(self, path: str, params: Dict[str, Any]) -> Any:
        async def attempt():
            return await self._dispatcher.get(path, params=params)

        if self.retry_config.max_attempts == 1:
            response = await attempt()
            return response.data

        try:
            response = await call_with_retry(
                attempt,
                exceptions=(TransportError,),
                config=self.retry_config,
                name="gateway_get",
            )
        except RetryError as e:
            raise e.last_exception
        return response.data

    async def _fetch_through(self, key: str, path: str, params: Dict[str, Any],
                             config: CacheKeyConfig) -> Any:
        async def fetch_and_store():
            payload = await self._fetch(path, params)
            await self._write_entry(key, payload, config.ttl_seconds)
            return payload

        if self.coalesce:
            return await self._coalescer.get_or_fetch(key, fetch_and_store)
        return await fetch_and_store()

    async def _read_entry(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._store.get(key)
        except StorageError as e:
            self.metrics.record_storage_error("read")
            self.logger.error("Cache read failed; treating as miss", key=key, error=e.message)
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (ValueError, TypeError) as e:
            self.metrics.record_storage_error("decode")
            self.logger.error("Cache entry unreadable; treating as miss", key=key, error=str(e))
            return None

    async def _write_entry(self, key: str, payload: Any, ttl_seconds: float) -> None:
        entry = CacheEntry(key=key, payload=payload, stored_at=self._clock(), ttl_seconds=ttl_seconds)
        try:
            await self._store.set(key, entry.to_json())
        except (StorageError, TypeError, ValueError) as e:
            self.metrics.record_storage_error("write")
            self.logger.error("Cache write failed", key=key, error=str(e))
            return
        self.logger.debug("Cached response", key=key, ttl=ttl_seconds)

    async def invalidate(self, path: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Remove the entry for one request in the current scope."""
        path, params = split_path_params(path, params)
        key = self.cache_key(path, params)
        await self._store.set(key, None)
        self.logger.debug("Cache entry invalidated", key=key)

    async def invalidate_prefix(self, path_prefix: str) -> int:
        """Remove every cached read whose path starts with ``path_prefix``."""
        prefix = self._scope_prefix() + f"GET {path_prefix.lstrip('/')}"
        keys = await self._store.keys(prefix)
        await self._store.delete_many(keys)
        self.logger.debug("Cache prefix invalidated", prefix=prefix, removed=len(keys))
        return len(keys)

    async def clear_api_cache(self, url_pattern: Optional[str] = None) -> int:
        """Remove all cached responses, or those whose key contains ``url_pattern``."""
        keys = await self._store.keys(f"{self.namespace}:")
        if url_pattern:
            keys = [k for k in keys if url_pattern in k]
        await self._store.delete_many(keys)
        self.logger.info("API cache cleared", pattern=url_pattern, removed=len(keys))
        return len(keys)

    async def clear_user_cache(self, scope: Optional[str] = None) -> int:
        """Remove the cached responses of one scope (the current one by default)."""
        keys = await self._store.keys(self._scope_prefix(scope))
        await self._store.delete_many(keys)
        self.logger.info("User cache cleared", scope=scope or self._scope_provider(), removed=len(keys))
        return len(keys)

    async def clear_all(self) -> int:
        """Remove every entry in the cache namespace (used on format changes)."""
        return await self.clear_api_cache()

    async def handle_logout(self, scope: str) -> None:
        """Logout listener: purge the departing account's cached responses."""
        if scope != "guest":
            await self.clear_user_cache(scope)

    async def prune_expired(self) -> int:
        """Remove entries older than the TTL they were written with."""
        now = self._clock()
        expired: List[str] = []
        for key in await self._store.keys(f"{self.namespace}:"):
            entry = await self._read_entry(key)
            if entry is None or entry.is_expired(now):
                expired.append(key)
        await self._store.delete_many(expired)
        if expired:
            self.logger.info("Expired cache entries pruned", removed=len(expired))
        return len(expired)

    async def get_cache_stats(self) -> Dict[str, Any]:
        """
        Summarize the persisted cache.

        Returns a dictionary with total items, total size in characters,
        expired items, and per-category counts and sizes.
        """
        now = self._clock()
        categories: Dict[str, Dict[str, int]] = {
            "api": {"count": 0, "size": 0},
            "user": {"count": 0, "size": 0},
            "feed": {"count": 0, "size": 0},
            "media": {"count": 0, "size": 0},
        }
        total_size = 0
        expired_items = 0

        keys = await self._store.keys(f"{self.namespace}:")
        for key in keys:
            try:
                raw = await self._store.get(key)
            except StorageError as e:
                self.logger.error("Cache stats read failed", key=key, error=e.message)
                continue
            if raw is None:
                continue

            size = len(raw)
            total_size += size
            matched = ["api"]
            if f"{self.namespace}:user_" in key:
                matched.append("user")
            if "content/posts" in key:
                matched.append("feed")
            elif "/media" in key or " media" in key:
                matched.append("media")
            for name in matched:
                categories[name]["count"] += 1
                categories[name]["size"] += size

            try:
                if CacheEntry.from_json(raw).is_expired(now):
                    expired_items += 1
            except (ValueError, TypeError):
                continue

        return {
            "total_items": len(keys),
            "total_size": total_size,
            "expired_items": expired_items,
            "categories": categories,
        }
