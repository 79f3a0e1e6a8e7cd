from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """SDK settings loaded from environment variables.

    All settings can be configured via ``AVATAR_SDK_*`` environment
    variables or a .env file.
    """

    # API settings
    base_url: str = "https://varie.ai/api"

    # HTTP Client connection pool settings
    httpx_timeout: float = 60.0  # Default timeout for all operations
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 60.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 20
    httpx_max_keepalive_connections: int = 10

    # Rate limiting settings
    rate_limit_requests_per_second: float = 5.0
    rate_limit_max_burst: int | None = None  # None means max(10, 2 * rps)
    rate_limit_queue_requests: bool = True
    rate_limit_max_queue_size: int = 50

    # Cache settings
    cache_enabled: bool = True
    cache_backend: Literal["auto", "memory", "redis"] = "auto"
    cache_prefix: str = "avatar-sdk:v1"
    discover_cache_ttl_ms: int = 5 * 60 * 1000  # 5 minutes
    character_cache_ttl_ms: int = 60 * 60 * 1000  # 1 hour

    # Redis settings (optional, durable cache backend)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Download settings
    download_chunk_size: int = Field(default=64 * 1024, ge=1024)

    @field_validator("rate_limit_requests_per_second")
    @classmethod
    def validate_rate_positive(cls, v: float) -> float:
        """Validate the request rate is positive."""
        if v <= 0:
            raise ValueError("rate_limit_requests_per_second must be positive")
        return v

    @field_validator("rate_limit_max_burst", "rate_limit_max_queue_size")
    @classmethod
    def validate_rate_limit_sizes(cls, v: int | None) -> int | None:
        """Validate burst and queue sizes are at least 1."""
        if v is not None and v < 1:
            raise ValueError("Rate limit sizes must be at least 1")
        return v

    @field_validator("discover_cache_ttl_ms", "character_cache_ttl_ms")
    @classmethod
    def validate_ttl_positive(cls, v: int) -> int:
        """Validate cache TTLs are positive."""
        if v <= 0:
            raise ValueError("Cache TTL values must be positive")
        return v

    @field_validator("httpx_timeout", "httpx_connect_timeout", "httpx_read_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    model_config = SettingsConfigDict(
        env_prefix="AVATAR_SDK_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
