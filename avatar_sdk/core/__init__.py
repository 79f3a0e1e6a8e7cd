"""Core building blocks of the avatar SDK."""

from avatar_sdk.core.bundle import (
    decode_bundle,
    decode_model,
    encode_bundle,
    extract_model_files,
    is_bundle,
)
from avatar_sdk.core.cache import (
    CacheKind,
    CacheStats,
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    build_cache_key,
    create_cache_store,
    model_cache_key,
)
from avatar_sdk.core.config import Settings, settings
from avatar_sdk.core.http_client import create_http_client, get_http_client, init_http_client
from avatar_sdk.core.logging import get_logger, setup_logging
from avatar_sdk.core.rate_limit import RateLimiter, RateLimitStatus, with_rate_limit

__all__ = [
    "decode_bundle",
    "decode_model",
    "encode_bundle",
    "extract_model_files",
    "is_bundle",
    "CacheKind",
    "CacheStats",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "build_cache_key",
    "create_cache_store",
    "model_cache_key",
    "Settings",
    "settings",
    "create_http_client",
    "get_http_client",
    "init_http_client",
    "get_logger",
    "setup_logging",
    "RateLimiter",
    "RateLimitStatus",
    "with_rate_limit",
]
