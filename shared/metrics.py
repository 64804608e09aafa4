"""
Shared metrics for the client gateway.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class GatewayMetrics:
    """
    Prometheus counters for the gateway.

    Each instance owns its registry unless one is passed in, so several
    gateways (and test cases) never collide on metric names.
    """

    def __init__(self, service_name: str = "client_gateway", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up gateway metrics."""
        self._metrics["cache_lookups_total"] = Counter(
            "gateway_cache_lookups_total",
            "Cache lookups by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["network_requests_total"] = Counter(
            "gateway_network_requests_total",
            "Requests sent to the backend",
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["network_request_duration_seconds"] = Histogram(
            "gateway_network_request_duration_seconds",
            "Backend request duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["coalesced_requests_total"] = Counter(
            "gateway_coalesced_requests_total",
            "Callers that joined an in-flight fetch",
            registry=self.registry
        )

        self._metrics["storage_errors_total"] = Counter(
            "gateway_storage_errors_total",
            "Cache storage failures degraded to a miss",
            ["operation"],
            registry=self.registry
        )

        self._metrics["optimistic_rollbacks_total"] = Counter(
            "gateway_optimistic_rollbacks_total",
            "Optimistic updates rolled back",
            ["outcome"],
            registry=self.registry
        )

    def record_cache_lookup(self, outcome: str):
        """Record a cache decision: hit, miss, stale, bypass or refresh."""
        self._metrics["cache_lookups_total"].labels(outcome=outcome).inc()

    def record_network_request(self, method: str, status_code: Any, duration: float):
        """Record a backend round trip."""
        self._metrics["network_requests_total"].labels(
            method=method,
            status_code=str(status_code)
        ).inc()
        self._metrics["network_request_duration_seconds"].labels(method=method).observe(duration)

    def record_coalesced(self):
        self._metrics["coalesced_requests_total"].inc()

    def record_storage_error(self, operation: str):
        self._metrics["storage_errors_total"].labels(operation=operation).inc()

    def record_rollback(self, outcome: str = "applied"):
        self._metrics["optimistic_rollbacks_total"].labels(outcome=outcome).inc()

    @contextmanager
    def time_request(self, method: str):
        """Time a backend request; the status label is set by the caller."""
        start_time = time.perf_counter()
        outcome = {"status_code": "error"}
        try:
            yield outcome
        finally:
            self.record_network_request(method, outcome["status_code"], time.perf_counter() - start_time)

    def sample(self, name: str, **labels) -> float:
        """Read the current value of a sample, 0.0 when it was never recorded."""
        value = self.registry.get_sample_value(name, labels or None)
        return value or 0.0
