"""
Gateway client: wires storage, session, dispatcher, cache, pagination and
optimistic updates into one object with an explicit lifecycle.
"""

import time
from typing import Any, Callable, Dict, Optional

import httpx

from shared.config import GatewaySettings, get_settings
from shared.logging import clear_context, configure_logging, get_logger
from shared.metrics import GatewayMetrics
from shared.retry import RetryConfig

from .adapters.dispatcher import RequestDispatcher
from .auth.session_store import SessionStore
from .caching.cache_manager import CachingGateway
from .caching.core import CacheKeyConfig
from .domain.optimistic import Notifier, OptimisticUpdater
from .pagination.aggregator import AggregatedResult, PaginationAggregator
from .storage.secure_store import SecureKeyValueStore, build_secure_store


class GatewayClient:
    """
    Composition root for the gateway.

    Instances share nothing, so tests can build as many isolated clients as
    they need. Call ``init()`` on start-up and ``teardown()`` on shutdown,
    or use the client as an async context manager.
    """

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        *,
        store: Optional[SecureKeyValueStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        notifier: Optional[Notifier] = None,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = get_logger("gateway.client")
        self.metrics = metrics or GatewayMetrics()
        self.store = store or build_secure_store(self.settings)

        self.dispatcher = RequestDispatcher(
            self.settings.api_base_url,
            timeout=self.settings.request_timeout_seconds,
            transport=transport,
            metrics=self.metrics,
        )
        self.session = SessionStore(self.store, self.dispatcher)
        self.dispatcher.token_provider = self.session

        self.gateway = CachingGateway(
            self.dispatcher,
            self.store,
            scope_provider=self.session.cache_scope,
            namespace=self.settings.cache_namespace,
            clock=clock,
            metrics=self.metrics,
            retry_config=RetryConfig.from_settings(self.settings),
            coalesce=self.settings.coalesce_requests,
        )
        self.session.add_logout_listener(self.gateway.handle_logout)

        self.paginator = PaginationAggregator(self.gateway, max_pages=self.settings.pagination_max_pages)
        self.optimistic = OptimisticUpdater(notifier=notifier, metrics=self.metrics)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """Restore the persisted session."""
        if self._initialized:
            return
        await self.session.load()
        self._initialized = True
        self.logger.info(
            "Gateway initialized",
            base_url=self.settings.api_base_url,
            storage=self.settings.storage_backend,
            session=self.session.state.value
        )

    async def teardown(self) -> None:
        """Close the HTTP client and the storage backend."""
        await self.dispatcher.close()
        await self.store.close()
        clear_context()
        self._initialized = False
        self.logger.info("Gateway torn down")

    async def __aenter__(self) -> "GatewayClient":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.teardown()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **cache_options: Any) -> Any:
        """Cached read; keyword options build a CacheKeyConfig."""
        return await self.gateway.get(path, params, CacheKeyConfig(**cache_options))

    async def fetch_all(self, path: str, params: Optional[Dict[str, Any]] = None, *,
                        page_size: Optional[int] = None, **kwargs: Any) -> AggregatedResult:
        """Aggregate every page of ``path``."""
        return await self.paginator.fetch_all(
            path,
            params,
            page_size=page_size or self.settings.default_page_size,
            **kwargs
        )


def create_client(settings: Optional[GatewaySettings] = None, **kwargs: Any) -> GatewayClient:
    """Configure logging from settings and build a client."""
    settings = settings or get_settings()
    configure_logging("client_gateway", settings.log_level)
    return GatewayClient(settings, **kwargs)
