"""
Encrypted key-value storage for session and cache state.

Values are opaque strings; callers JSON-encode structured data themselves.
``set(key, None)`` deletes the key. Backend failures surface as
``StorageError`` and are never swallowed here.
"""

import asyncio
import json
import os
import tempfile
from typing import Dict, Iterable, List, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import GatewaySettings
from shared.errors import StorageError
from shared.logging import get_logger
from shared.secrets_manager import SecretsCipher


class SecureKeyValueStore(Protocol):
    """Protocol for secure storage backends."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    async def set(self, key: str, value: Optional[str]) -> None:
        """Store a value; None deletes the key."""

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        """List stored keys, optionally restricted to a prefix."""

    async def delete_many(self, keys: Iterable[str]) -> None:
        """Delete several keys, ignoring absent ones."""

    async def close(self) -> None:
        """Release backend resources."""


class MemorySecureStore:
    """Process-local store for tests and ephemeral sessions."""

    def __init__(self, cipher: Optional[SecretsCipher] = None):
        self._cipher = cipher
        self._data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        raw = self._data.get(key)
        if raw is None or self._cipher is None:
            return raw
        return self._cipher.decrypt(raw)

    async def set(self, key: str, value: Optional[str]) -> None:
        async with self._lock:
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = self._cipher.encrypt(value) if self._cipher else value

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        return [k for k in self._data if prefix is None or k.startswith(prefix)]

    async def delete_many(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in list(keys):
                self._data.pop(key, None)

    async def close(self) -> None:
        return None


class FileSecureStore:
    """
    Encrypted JSON document on disk.

    The whole document is rewritten through a temporary file and
    ``os.replace`` so a crash never leaves a half-written store behind.
    """

    def __init__(self, path: str, cipher: SecretsCipher):
        self.path = path
        self._cipher = cipher
        self._data: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()
        self.logger = get_logger("gateway.secure_store.file")

    def _read_document(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise ValueError("store document must be a JSON object")
        return document

    def _write_document(self, document: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".store-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _load(self) -> Dict[str, str]:
        if self._data is None:
            try:
                self._data = await asyncio.to_thread(self._read_document)
            except (OSError, ValueError) as e:
                self.logger.error("Failed to read secure store", path=self.path, error=str(e))
                raise StorageError("Failed to read secure store", details={"path": self.path}) from e
        return self._data

    async def _persist(self, document: Dict[str, str]) -> None:
        try:
            await asyncio.to_thread(self._write_document, document)
        except OSError as e:
            self.logger.error("Failed to write secure store", path=self.path, error=str(e))
            raise StorageError("Failed to write secure store", details={"path": self.path}) from e
        self._data = document

    async def get(self, key: str) -> Optional[str]:
        data = await self._load()
        raw = data.get(key)
        if raw is None:
            return None
        return self._cipher.decrypt(raw)

    async def set(self, key: str, value: Optional[str]) -> None:
        async with self._lock:
            document = dict(await self._load())
            if value is None:
                if key not in document:
                    return
                document.pop(key)
            else:
                document[key] = self._cipher.encrypt(value)
            await self._persist(document)

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        data = await self._load()
        return [k for k in data if prefix is None or k.startswith(prefix)]

    async def delete_many(self, keys: Iterable[str]) -> None:
        async with self._lock:
            document = dict(await self._load())
            removed = [k for k in keys if document.pop(k, None) is not None]
            if removed:
                await self._persist(document)

    async def close(self) -> None:
        self._data = None


class RedisSecureStore:
    """Encrypted values in Redis, one Redis key per store key."""

    def __init__(self, redis_url: str, cipher: SecretsCipher, namespace: str = "client_gateway:store:",
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.namespace = namespace
        self._cipher = cipher
        self._redis = client
        self._lock = asyncio.Lock()
        self.logger = get_logger("gateway.secure_store.redis")

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _storage_error(self, operation: str, error: Exception) -> StorageError:
        self.logger.error("Secure store operation failed", operation=operation, error=str(error))
        return StorageError(f"Secure store {operation} failed", details={"error": str(error)})

    async def get(self, key: str) -> Optional[str]:
        try:
            redis_client = await self._get_redis()
            raw = await redis_client.get(self._make_key(key))
        except RedisError as e:
            raise self._storage_error("get", e) from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return self._cipher.decrypt(raw)

    async def set(self, key: str, value: Optional[str]) -> None:
        async with self._lock:
            try:
                redis_client = await self._get_redis()
                if value is None:
                    await redis_client.delete(self._make_key(key))
                else:
                    await redis_client.set(self._make_key(key), self._cipher.encrypt(value))
            except RedisError as e:
                raise self._storage_error("set", e) from e

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        try:
            redis_client = await self._get_redis()
            found = []
            async for raw_key in redis_client.scan_iter(match=f"{self.namespace}*"):
                if isinstance(raw_key, bytes):
                    raw_key = raw_key.decode("utf-8")
                key = raw_key[len(self.namespace):]
                if prefix is None or key.startswith(prefix):
                    found.append(key)
            return found
        except RedisError as e:
            raise self._storage_error("scan", e) from e

    async def delete_many(self, keys: Iterable[str]) -> None:
        redis_keys = [self._make_key(k) for k in keys]
        if not redis_keys:
            return
        async with self._lock:
            try:
                redis_client = await self._get_redis()
                await redis_client.delete(*redis_keys)
            except RedisError as e:
                raise self._storage_error("delete", e) from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_secure_store(settings: GatewaySettings) -> SecureKeyValueStore:
    """Create the storage backend selected in settings."""
    if settings.storage_backend == "memory":
        cipher = SecretsCipher(settings.master_key) if settings.master_key else None
        return MemorySecureStore(cipher)

    if not settings.master_key:
        raise ValueError(f"master_key is required for the {settings.storage_backend} storage backend")
    cipher = SecretsCipher(settings.master_key)

    if settings.storage_backend == "file":
        return FileSecureStore(settings.storage_path, cipher)
    return RedisSecureStore(settings.redis_url, cipher)
