"""Python SDK for discovering Varie AI characters and downloading their models."""

from avatar_sdk.client import AvatarClient
from avatar_sdk.core import (
    CacheKind,
    CacheStats,
    CacheStore,
    InMemoryCacheStore,
    RateLimiter,
    RateLimitStatus,
    RedisCacheStore,
    Settings,
    create_cache_store,
    create_http_client,
    decode_bundle,
    decode_model,
    encode_bundle,
    extract_model_files,
    get_http_client,
    init_http_client,
    is_bundle,
    setup_logging,
    with_rate_limit,
)
from avatar_sdk.exceptions import (
    APIError,
    CacheError,
    InvalidBundleError,
    ModelNotAvailableError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    SDKError,
    SDKErrorCode,
)
from avatar_sdk.models import (
    Character,
    DiscoverResponse,
    DownloadProgress,
    ModelFiles,
    ModelType,
    Pagination,
    PublicModel,
    UnpackedModel,
)

__version__ = "0.1.0"

__all__ = [
    "AvatarClient",
    "CacheKind",
    "CacheStats",
    "CacheStore",
    "InMemoryCacheStore",
    "RateLimiter",
    "RateLimitStatus",
    "RedisCacheStore",
    "Settings",
    "create_cache_store",
    "create_http_client",
    "get_http_client",
    "init_http_client",
    "decode_bundle",
    "decode_model",
    "encode_bundle",
    "extract_model_files",
    "is_bundle",
    "setup_logging",
    "with_rate_limit",
    "APIError",
    "CacheError",
    "InvalidBundleError",
    "ModelNotAvailableError",
    "NetworkError",
    "NotFoundError",
    "RateLimitedError",
    "SDKError",
    "SDKErrorCode",
    "Character",
    "DiscoverResponse",
    "DownloadProgress",
    "ModelFiles",
    "ModelType",
    "Pagination",
    "PublicModel",
    "UnpackedModel",
]
