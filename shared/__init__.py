"""
Shared utilities for the client gateway.

This package aggregates the cross-cutting building blocks used by the
gateway components:

- config: Gateway configuration via pydantic-settings
- logging: Structured logging with request/user correlation
- metrics: Prometheus counters for cache and network activity
- errors: Canonical error types and responses
- retry: Retry helpers with exponential backoff and jitter
- secrets_manager: Encryption at rest for the secure key-value store

Do not import from client_gateway into shared/.
"""
