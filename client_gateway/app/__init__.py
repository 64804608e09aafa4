"""
Client gateway application package.

The gateway mediates every backend call made by the application's data
layer, enforcing:
- Authentication: the session token is attached to every request
- Caching: TTL-based reads with write-through and explicit invalidation
- Coalescing: concurrent identical reads share one network call
- Pagination and optimistic updates on top of the cached reads

Structure:
- app.main: GatewayClient composition root and lifecycle.
- app.storage: Encrypted key-value storage backends.
- app.auth: Session store (login/logout/delete-account).
- app.adapters: HTTP request dispatcher.
- app.caching: TTL cache gateway and request coalescer.
- app.pagination: Paged endpoint aggregation.
- app.domain: Optimistic update orchestration.
"""
