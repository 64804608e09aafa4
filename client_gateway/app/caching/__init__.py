"""
Gateway caching package.

TTL-based read-through cache in front of the request dispatcher, with
write-through on success, explicit invalidation and request coalescing.
"""

from .cache_manager import CachingGateway
from .coalescer import RequestCoalescer
from .core import CacheEntry, CacheKeyConfig, make_request_identity, normalize_params

__all__ = [
    "CacheEntry",
    "CacheKeyConfig",
    "CachingGateway",
    "RequestCoalescer",
    "make_request_identity",
    "normalize_params",
]
