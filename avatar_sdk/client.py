"""Avatar SDK client.

Discovers characters, fetches their details and downloads model bundles.
Every outbound request waits for the rate limiter; responses are served
from the cache store when possible.

Example:
    >>> async with AvatarClient() as client:
    ...     page = await client.discover(genre="fantasy")
    ...     model = await client.download_model(page.characters[0].id)
"""

import time
from typing import Callable, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from avatar_sdk.core.bundle import decode_model, is_bundle
from avatar_sdk.core.cache import (
    CacheKind,
    CacheStats,
    CacheStore,
    InMemoryCacheStore,
    build_cache_key,
    create_cache_store,
    model_cache_key,
)
from avatar_sdk.core.config import Settings, settings as default_settings
from avatar_sdk.core.http_client import create_http_client
from avatar_sdk.core.logging import get_log_context, get_logger
from avatar_sdk.core.rate_limit import RateLimiter, RateLimitStatus
from avatar_sdk.exceptions import (
    APIError,
    CacheError,
    InvalidBundleError,
    ModelNotAvailableError,
    NetworkError,
    NotFoundError,
)
from avatar_sdk.models import (
    Character,
    DiscoverResponse,
    DownloadProgress,
    ModelType,
    UnpackedModel,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]


class AvatarClient:
    """Client for the public character API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        cache: Optional[CacheStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """Initialize the client.

        Args:
            settings: SDK settings (module settings if omitted)
            http_client: Optional shared HTTP client; one is created and
                owned by this client otherwise
            cache: Cache store (chosen from settings if omitted)
            rate_limiter: Rate limiter (built from settings if omitted)
        """
        self.settings = settings or default_settings
        self.base_url = self.settings.base_url.rstrip("/")
        self.cache_enabled = self.settings.cache_enabled

        self._owns_http_client = http_client is None
        self._http_client = http_client or create_http_client(config=self.settings)

        self._owns_cache = cache is None
        if cache is not None:
            self.cache = cache
        elif self.cache_enabled:
            self.cache = create_cache_store(config=self.settings)
        else:
            # Still in-memory for the session, but never consulted.
            self.cache = InMemoryCacheStore()

        self._owns_rate_limiter = rate_limiter is None
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_second=self.settings.rate_limit_requests_per_second,
            max_burst=self.settings.rate_limit_max_burst,
            queue_requests=self.settings.rate_limit_queue_requests,
            max_queue_size=self.settings.rate_limit_max_queue_size,
        )

    async def __aenter__(self) -> "AvatarClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Close owned resources and fail any callers still queued."""
        if self._owns_rate_limiter:
            self.rate_limiter.reset()
        if self._owns_cache:
            await self.cache.close()
        if self._owns_http_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def discover(
        self,
        limit: int = 20,
        cursor: Optional[str] = None,
        genre: Optional[str] = None,
        language: Optional[str] = None,
        skip_cache: bool = False,
    ) -> DiscoverResponse:
        """Discover available characters.

        Args:
            limit: Max results (1-50)
            cursor: Pagination cursor from a previous response
            genre: Filter by genre
            language: Filter by origin language
            skip_cache: Fetch fresh data even if cached

        Returns:
            Characters with pagination info
        """
        params = {"limit": limit, "cursor": cursor, "genre": genre, "language": language}
        cache_key = build_cache_key("discover", params)
        use_cache = self.cache_enabled and not skip_cache

        if use_cache:
            cached = await self._cache_get(CacheKind.DISCOVER, cache_key)
            if cached is not None:
                return DiscoverResponse.model_validate_json(cached)

        url = f"{self.base_url}/character-create/public/discover"
        query = {name: str(value) for name, value in params.items() if value is not None}
        response = await self._request(url, params=query)
        if not response.is_success:
            raise APIError(response.status_code, f"API error: {response.status_code} {response.reason_phrase}")

        data = self._parse(DiscoverResponse, response)
        if self.cache_enabled:
            await self._cache_set(
                CacheKind.DISCOVER, cache_key, response.content, self.settings.discover_cache_ttl_ms
            )
        return data

    async def get_character(self, character_id: str, skip_cache: bool = False) -> Character:
        """Get character details by ID.

        Raises:
            NotFoundError: If the ID is empty or unknown to the API
        """
        if not character_id:
            raise NotFoundError("Character ID is required")

        use_cache = self.cache_enabled and not skip_cache
        if use_cache:
            cached = await self._cache_get(CacheKind.CHARACTER, character_id)
            if cached is not None:
                return Character.model_validate_json(cached)

        url = f"{self.base_url}/character-create/public/characters/{quote(character_id, safe='')}"
        response = await self._request(url)

        if response.status_code == 404:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = body.get("error") if isinstance(body, dict) else None
            raise NotFoundError(message or f"Character not found: {character_id}")
        if not response.is_success:
            raise APIError(response.status_code, f"API error: {response.status_code} {response.reason_phrase}")

        character = self._parse(Character, response)
        if self.cache_enabled:
            await self._cache_set(
                CacheKind.CHARACTER, character_id, response.content, self.settings.character_cache_ttl_ms
            )
        return character

    async def download_model(
        self,
        character_id: str,
        model_type: ModelType | str = ModelType.FULL,
        use_cache: bool = True,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UnpackedModel:
        """Download and unpack a character model.

        Args:
            character_id: Character to download the model for
            model_type: 'full' (default) or 'base'
            use_cache: Use and populate the model cache
            on_progress: Called after every received chunk when the server
                reports a content length

        Raises:
            ModelNotAvailableError: If the character has no model URL
            InvalidBundleError: If the download is not a valid bundle
        """
        model_type = ModelType(model_type)
        key = model_cache_key(character_id, model_type)
        context = get_log_context(character_id=character_id, model_type=model_type.value)
        use_cache = use_cache and self.cache_enabled

        if use_cache:
            cached = await self._cache_get_durable(key)
            if cached is not None:
                try:
                    model = decode_model(cached, character_id, model_type)
                except InvalidBundleError as e:
                    # Refetched below; the fresh bundle overwrites this key.
                    logger.warning(
                        f"Discarding corrupt cached model: {e.message}",
                        extra={**context, "cache_kind": "models"},
                    )
                else:
                    logger.debug("Model cache hit", extra=context)
                    return model

        character = await self.get_character(character_id)
        model_url = character.public_model.url_for(model_type) if character.public_model else None
        if not model_url:
            raise ModelNotAvailableError(
                f"Model type '{model_type.value}' not available for character '{character_id}'"
            )

        data = await self._download_bundle(model_url, on_progress)
        if not is_bundle(data):
            raise InvalidBundleError("Downloaded file is not a valid .varie bundle")

        model = decode_model(data, character_id, model_type)
        logger.info(f"Downloaded model ({len(data)} bytes)", extra={**context, "url": model_url})

        if use_cache:
            try:
                await self.cache.set_durable(key, data)
            except CacheError as e:
                logger.warning(f"Cache write failed: {e.message}", extra={**context, "cache_kind": "models"})
        return model

    async def clear_cache(self) -> None:
        """Clear all cached data. Raises CacheError on storage failure."""
        await self.cache.clear()

    async def get_cache_stats(self) -> CacheStats:
        """Get cache statistics. Raises CacheError on storage failure."""
        return await self.cache.stats()

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.get_status()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _cache_get(self, kind: CacheKind, key: str) -> bytes | None:
        try:
            cached = await self.cache.get_expiring(kind, key)
        except CacheError as e:
            logger.warning(f"Cache read failed, fetching instead: {e.message}", extra={"cache_kind": kind.value})
            return None
        if cached is not None:
            logger.debug(f"Cache hit for key: {key}", extra={"cache_kind": kind.value})
        return cached

    async def _cache_set(self, kind: CacheKind, key: str, payload: bytes, ttl_ms: int) -> None:
        try:
            await self.cache.set_expiring(kind, key, payload, ttl_ms)
        except CacheError as e:
            logger.warning(f"Cache write failed: {e.message}", extra={"cache_kind": kind.value})

    async def _cache_get_durable(self, key: str) -> bytes | None:
        try:
            return await self.cache.get_durable(key)
        except CacheError as e:
            logger.warning(f"Cache read failed, fetching instead: {e.message}", extra={"cache_kind": "models"})
            return None

    @staticmethod
    def _parse(model_cls, response: httpx.Response):
        try:
            return model_cls.model_validate_json(response.content)
        except ValidationError as e:
            raise APIError(response.status_code, f"Unexpected API response: {e}") from e

    async def _request(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        await self.rate_limiter.acquire()
        start = time.perf_counter()
        try:
            response = await self._http_client.get(url, params=params)
        except httpx.HTTPError as e:
            raise NetworkError(f"Network request failed: {e}", e) from e
        logger.debug(
            "API request completed",
            extra={
                "url": url,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 1),
            },
        )
        return response

    async def _download_bundle(self, url: str, on_progress: Optional[ProgressCallback]) -> bytes:
        """Stream a bundle, reporting progress when the size is known."""
        await self.rate_limiter.acquire()
        try:
            async with self._http_client.stream("GET", url) as response:
                if not response.is_success:
                    raise NetworkError(
                        f"Failed to download model: {response.status_code} {response.reason_phrase}"
                    )

                content_length = response.headers.get("content-length")
                if on_progress is None or not content_length or not content_length.isdigit():
                    return await response.aread()

                total = int(content_length)
                chunks: list[bytes] = []
                loaded = 0
                async for chunk in response.aiter_bytes(self.settings.download_chunk_size):
                    chunks.append(chunk)
                    loaded += len(chunk)
                    on_progress(DownloadProgress(
                        loaded=loaded,
                        total=total,
                        percent=round(loaded / total * 100) if total > 0 else -1,
                    ))
                return b"".join(chunks)
        except httpx.HTTPError as e:
            raise NetworkError(f"Network request failed: {e}", e) from e
