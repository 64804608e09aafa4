"""
Shared configuration management for the client gateway.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """Environment-driven configuration for the gateway and its stores."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Backend
    api_base_url: str = "http://localhost:8000/api/"
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Retry policy for idempotent reads (1 attempt = no retry)
    retry_max_attempts: int = Field(default=1, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)

    # Secure storage
    storage_backend: Literal["memory", "file", "redis"] = "memory"
    storage_path: str = ".gateway_store.json"
    redis_url: str = "redis://localhost:6379/0"
    master_key: Optional[str] = None

    # Cache
    cache_namespace: str = "api_cache"
    coalesce_requests: bool = True

    # Pagination
    default_page_size: int = Field(default=10, ge=1)
    pagination_max_pages: int = Field(default=1000, ge=1)

    @field_validator("api_base_url", mode="after")
    @classmethod
    def ensure_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so relative paths join under it."""
        return str(v).rstrip("/") + "/"


@lru_cache(maxsize=1)
def get_settings() -> GatewaySettings:
    """Get the process-wide settings instance."""
    return GatewaySettings()
