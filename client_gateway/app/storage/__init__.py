"""
Secure key-value storage backends.

Holds the session token, the cached user projection and persisted cache
entries, encrypted at rest.
"""

from .secure_store import (
    FileSecureStore,
    MemorySecureStore,
    RedisSecureStore,
    SecureKeyValueStore,
    build_secure_store,
)

__all__ = [
    "SecureKeyValueStore",
    "MemorySecureStore",
    "FileSecureStore",
    "RedisSecureStore",
    "build_secure_store",
]
