"""Cache abstraction layer for the SDK.

Provides a pluggable cache store with in-memory and Redis implementations.
Three stores are kept per cache:

- discover responses (expiring, short TTL)
- character details (expiring, medium TTL)
- model bundles (durable, never expire, largest payloads)

Expiry is lazy: an expiring entry is treated as absent once read after its
TTL has lapsed. Nothing sweeps the stores in the background.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import redis.asyncio as aioredis
from redis import RedisError

from avatar_sdk.core.config import Settings, settings
from avatar_sdk.core.logging import get_logger
from avatar_sdk.exceptions import CacheError

logger = get_logger(__name__)

STORE_MODELS = "models"

# Redis backend size estimate per model entry; record sizes are not read back.
ESTIMATED_MODEL_SIZE_BYTES = 5 * 1024 * 1024

_STORAGE_ERRORS = (RedisError, OSError)


class CacheKind(str, Enum):
    """Expiring cache stores."""

    DISCOVER = "discover"
    CHARACTER = "characters"


def _now_ms() -> float:
    return time.time() * 1000


def build_cache_key(prefix: str, params: dict[str, Any]) -> str:
    """Build a cache key from query parameters.

    Parameters are appended in the order given as ``name=value``; None
    values are skipped, so identical queries always yield the same key.

    Example:
        >>> build_cache_key("discover", {"limit": 20, "cursor": None, "genre": "fantasy"})
        'discover:limit=20:genre=fantasy'
    """
    parts = [prefix]
    for name, value in params.items():
        if value is not None:
            parts.append(f"{name}={value}")
    return ":".join(parts)


def model_cache_key(character_id: str, model_type: Any) -> str:
    """Durable cache key for a model: ``{character_id}:{model_type}``."""
    variant = getattr(model_type, "value", model_type)
    return f"{character_id}:{variant}"


@dataclass
class CacheStats:
    """Entry counts per store and approximate total size."""
    discover_entries: int = 0
    character_entries: int = 0
    model_entries: int = 0
    total_size_bytes: int = 0


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking (milliseconds)."""

    payload: bytes
    cached_at: float
    ttl_ms: Optional[int] = None

    def is_expired(self, now_ms: float) -> bool:
        """Check if the entry has expired. Durable entries never do."""
        if self.ttl_ms is None:
            return False
        return now_ms - self.cached_at > self.ttl_ms


class CacheStore(ABC):
    """Abstract base class for cache stores.

    All cache implementations must inherit from this class and implement
    the abstract methods. Storage failures are raised as CacheError.
    """

    @abstractmethod
    async def get_expiring(self, kind: CacheKind, key: str) -> bytes | None:
        """Retrieve an expiring value.

        Returns:
            The cached payload, or None if missing or older than its TTL.
        """

    @abstractmethod
    async def set_expiring(self, kind: CacheKind, key: str, payload: bytes, ttl_ms: int) -> None:
        """Store an expiring value, replacing any previous entry."""

    @abstractmethod
    async def get_durable(self, key: str) -> bytes | None:
        """Retrieve a model payload. Model entries never expire."""

    @abstractmethod
    async def set_durable(self, key: str, payload: bytes) -> None:
        """Store a model payload, replacing any previous entry."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry from every store."""

    @abstractmethod
    async def stats(self) -> CacheStats:
        """Return entry counts and approximate size."""

    async def close(self) -> None:
        """Release any underlying connection."""


class InMemoryCacheStore(CacheStore):
    """In-memory cache store.

    Always available; used as the fallback backend and in tests. Sizes are
    exact because every payload is resident. Data is lost when the process
    exits.
    """

    def __init__(self, clock: Callable[[], float] = _now_ms) -> None:
        """Initialize the in-memory cache.

        Args:
            clock: Returns the current time in milliseconds.
        """
        self._clock = clock
        self._expiring: dict[CacheKind, dict[str, _CacheEntry]] = {
            kind: {} for kind in CacheKind
        }
        self._models: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get_expiring(self, kind: CacheKind, key: str) -> bytes | None:
        async with self._lock:
            store = self._expiring[CacheKind(kind)]
            entry = store.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del store[key]
                return None
            return entry.payload

    async def set_expiring(self, kind: CacheKind, key: str, payload: bytes, ttl_ms: int) -> None:
        async with self._lock:
            self._expiring[CacheKind(kind)][key] = _CacheEntry(
                payload=bytes(payload), cached_at=self._clock(), ttl_ms=ttl_ms
            )

    async def get_durable(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._models.get(key)
            return entry.payload if entry is not None else None

    async def set_durable(self, key: str, payload: bytes) -> None:
        async with self._lock:
            self._models[key] = _CacheEntry(payload=bytes(payload), cached_at=self._clock())

    async def clear(self) -> None:
        async with self._lock:
            self._expiring = {kind: {} for kind in CacheKind}
            self._models = {}

    async def stats(self) -> CacheStats:
        async with self._lock:
            entries = list(self._models.values())
            for store in self._expiring.values():
                entries.extend(store.values())
            return CacheStats(
                discover_entries=len(self._expiring[CacheKind.DISCOVER]),
                character_entries=len(self._expiring[CacheKind.CHARACTER]),
                model_entries=len(self._models),
                total_size_bytes=sum(len(entry.payload) for entry in entries),
            )


class RedisCacheStore(CacheStore):
    """Redis-backed durable cache store.

    Each entry is a hash ``{prefix}:{store}:{key}`` with the fields
    ``payload``, ``cached_at`` and, for expiring stores, ``ttl_ms``.
    stats() estimates size from the model count, because reading back every
    record to measure it would transfer the whole cache.

    Example:
        >>> cache = RedisCacheStore("redis://localhost:6379/0")
        >>> await cache.set_durable("soren:full", bundle_bytes)
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = "avatar-sdk:v1",
        clock: Callable[[], float] = _now_ms,
        client: Optional[Any] = None,
    ) -> None:
        """Initialize the Redis cache.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            prefix: Namespace for every key written by this store
            clock: Returns the current time in milliseconds
            client: Pre-built redis.asyncio client (skips from_url)
        """
        self._redis_url = redis_url
        self._prefix = prefix
        self._clock = clock
        self._redis: Optional[Any] = client

    def open(self) -> Any:
        """Return the Redis client, constructing it on first use.

        No command is sent; a bad URL fails here, an unreachable server
        fails on the first operation.

        Raises:
            CacheError: If the client cannot be constructed
        """
        if self._redis is None:
            try:
                self._redis = aioredis.from_url(self._redis_url)
            except (ValueError, *_STORAGE_ERRORS) as e:
                raise CacheError("open", f"Failed to open Redis at {self._redis_url}", e) from e
        return self._redis

    def _key(self, store: str, key: str) -> str:
        return f"{self._prefix}:{store}:{key}"

    def _pattern(self, store: str) -> str:
        return f"{self._prefix}:{store}:*"

    async def get_expiring(self, kind: CacheKind, key: str) -> bytes | None:
        client = self.open()
        redis_key = self._key(CacheKind(kind).value, key)
        try:
            payload, cached_at, ttl_ms = await client.hmget(
                redis_key, ["payload", "cached_at", "ttl_ms"]
            )
        except _STORAGE_ERRORS as e:
            raise CacheError("read", cause=e) from e

        if payload is None:
            return None
        entry = _CacheEntry(
            payload=payload,
            cached_at=float(cached_at or 0),
            ttl_ms=int(ttl_ms) if ttl_ms is not None else 0,
        )
        if entry.is_expired(self._clock()):
            try:
                await client.delete(redis_key)
            except _STORAGE_ERRORS as e:
                logger.debug(f"Failed to evict expired cache entry: {e}")
            return None
        return entry.payload

    async def set_expiring(self, kind: CacheKind, key: str, payload: bytes, ttl_ms: int) -> None:
        client = self.open()
        try:
            await client.hset(
                self._key(CacheKind(kind).value, key),
                mapping={
                    "payload": bytes(payload),
                    "cached_at": repr(self._clock()),
                    "ttl_ms": str(int(ttl_ms)),
                },
            )
        except _STORAGE_ERRORS as e:
            raise CacheError("write", cause=e) from e

    async def get_durable(self, key: str) -> bytes | None:
        client = self.open()
        try:
            return await client.hget(self._key(STORE_MODELS, key), "payload")
        except _STORAGE_ERRORS as e:
            raise CacheError("read", cause=e) from e

    async def set_durable(self, key: str, payload: bytes) -> None:
        client = self.open()
        try:
            await client.hset(
                self._key(STORE_MODELS, key),
                mapping={"payload": bytes(payload), "cached_at": repr(self._clock())},
            )
        except _STORAGE_ERRORS as e:
            raise CacheError("write", cause=e) from e

    def _stores(self) -> Iterable[str]:
        return [kind.value for kind in CacheKind] + [STORE_MODELS]

    async def _scan(self, client: Any, store: str) -> list:
        return [key async for key in client.scan_iter(match=self._pattern(store), count=500)]

    async def clear(self) -> None:
        """Clear every store.

        Keys of all stores are collected first; they are then deleted in a
        single MULTI/EXEC transaction so readers never see a partial clear.
        """
        client = self.open()
        try:
            per_store = await asyncio.gather(
                *(self._scan(client, store) for store in self._stores())
            )
            keys = [key for store_keys in per_store for key in store_keys]
            if not keys:
                return
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(*keys)
                await pipe.execute()
        except _STORAGE_ERRORS as e:
            raise CacheError("clear", cause=e) from e
        logger.info(f"Cleared {len(keys)} cache entries")

    async def stats(self) -> CacheStats:
        client = self.open()
        try:
            discover, characters, models = await asyncio.gather(
                *(self._scan(client, store) for store in self._stores())
            )
        except _STORAGE_ERRORS as e:
            raise CacheError("count", cause=e) from e

        return CacheStats(
            discover_entries=len(discover),
            character_entries=len(characters),
            model_entries=len(models),
            total_size_bytes=len(models) * ESTIMATED_MODEL_SIZE_BYTES,
        )

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_cache_store(
    backend: str | None = None,
    config: Settings | None = None,
) -> CacheStore:
    """Create the cache store for this environment.

    The backend is chosen once here. With ``auto`` the Redis store is used
    when Redis is enabled in settings; otherwise, or if the Redis client
    cannot be constructed, the in-memory store is used.

    Args:
        backend: 'memory', 'redis', 'auto' or None (use settings.cache_backend)
        config: Settings to read (module settings if omitted)
    """
    cfg = config or settings
    choice = backend or cfg.cache_backend

    if choice == "redis" or (choice == "auto" and cfg.redis_enabled):
        store = RedisCacheStore(cfg.redis_url, prefix=cfg.cache_prefix)
        try:
            store.open()
        except CacheError as e:
            logger.warning(f"Redis cache unavailable, using in-memory cache: {e.message}")
        else:
            return store

    return InMemoryCacheStore()
