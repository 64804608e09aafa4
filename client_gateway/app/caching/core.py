"""
Core cache data structures and request identity.
"""

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel, ConfigDict, Field


class CacheKeyConfig(BaseModel):
    """
    Per-call cache policy.

    - skip_cache: never read or write the cache for this call
    - cache_ttl_minutes: maximum age of a usable entry; 0 means always
      revalidate (fetch and write back on every call)
    - force_refresh: skip the read but still write the fresh result back
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    skip_cache: bool = False
    cache_ttl_minutes: float = Field(default=0, ge=0)
    force_refresh: bool = False

    @property
    def ttl_seconds(self) -> float:
        return self.cache_ttl_minutes * 60

    @property
    def reads_cache(self) -> bool:
        """Whether a stored entry may satisfy the call."""
        return not (self.skip_cache or self.force_refresh or self.cache_ttl_minutes == 0)


@dataclass
class CacheEntry:
    """A persisted response, replaced as a whole on every write."""
    key: str
    payload: Any
    stored_at: float  # epoch seconds
    ttl_seconds: float = 0.0  # TTL in force when written, for housekeeping only

    def age_seconds(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float, ttl_minutes: float) -> bool:
        """Check the entry against the caller's TTL."""
        return ttl_minutes > 0 and self.age_seconds(now) <= ttl_minutes * 60

    def is_expired(self, now: float) -> bool:
        """Check the entry against the TTL it was written with."""
        return self.age_seconds(now) > self.ttl_seconds

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        """
        Parse a stored entry.

        Raises:
            ValueError: If the stored value is not a cache entry
        """
        data = json.loads(raw)
        if not isinstance(data, dict) or "payload" not in data or "stored_at" not in data:
            raise ValueError("not a cache entry")
        return cls(
            key=str(data.get("key", "")),
            payload=data["payload"],
            stored_at=float(data["stored_at"]),
            ttl_seconds=float(data.get("ttl_seconds", 0.0)),
        )


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def split_path_params(path: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[str, Dict[str, Any]]:
    """
    Separate an inline query string from the path and merge it into params.

    Explicit params win over values embedded in the path.
    """
    path = path.lstrip("/")
    merged: Dict[str, Any] = {}
    if "?" in path:
        path, query = path.split("?", 1)
        for key, value in parse_qsl(query, keep_blank_values=True):
            if key in merged:
                existing = merged[key]
                merged[key] = existing + [value] if isinstance(existing, list) else [existing, value]
            else:
                merged[key] = value
    for key, value in (params or {}).items():
        if value is not None:
            merged[str(key)] = value
    return path, merged


def normalize_params(params: Optional[Mapping[str, Any]]) -> str:
    """Order-independent query serialization; None values are dropped."""
    if not params:
        return ""
    items = []
    for key in sorted(params, key=str):
        value = params[key]
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            items.extend((str(key), _stringify(v)) for v in value)
        else:
            items.append((str(key), _stringify(value)))
    return urlencode(items)


def make_request_identity(method: str, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Canonical request identity: ``GET posts/?page=1``."""
    path, merged = split_path_params(path, params)
    query = normalize_params(merged)
    identity = f"{method.upper()} {path}"
    return f"{identity}?{query}" if query else identity
