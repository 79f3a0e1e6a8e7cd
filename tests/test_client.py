"""Tests for the AvatarClient orchestration."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from avatar_sdk.client import AvatarClient
from avatar_sdk.core.bundle import encode_bundle
from avatar_sdk.core.cache import CacheKind, CacheStore, InMemoryCacheStore
from avatar_sdk.core.config import Settings
from avatar_sdk.core.rate_limit import RateLimiter
from avatar_sdk.exceptions import (
    APIError,
    CacheError,
    InvalidBundleError,
    ModelNotAvailableError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from avatar_sdk.models import ModelType

pytestmark = pytest.mark.asyncio

BASE_URL = "https://api.test"
DISCOVER_URL = f"{BASE_URL}/character-create/public/discover"
CHARACTER_URL = f"{BASE_URL}/character-create/public/characters/soren"
FULL_URL = "https://cdn.test/soren-full.varie"
BASE_MODEL_URL = "https://cdn.test/soren-base.varie"


def character_json(public_model=None):
    return {
        "id": "soren",
        "name": "Soren",
        "tagline": "Wandering cartographer",
        "quotes": ["Maps lie less than people."],
        "genre": "fantasy",
        "pronouns": "he/him",
        "personalityTags": ["curious", "stubborn"],
        "avatarUrl": "https://cdn.test/soren.png",
        "story": "Born on a ship.",
        "publicModel": public_model if public_model is not None else {
            "status": "full_ready",
            "baseUrl": BASE_MODEL_URL,
            "fullUrl": FULL_URL,
        },
    }


DISCOVER_JSON = {
    "characters": [character_json()],
    "pagination": {"limit": 20, "hasMore": True, "nextCursor": "c2"},
}


@pytest.fixture
def settings():
    return Settings(base_url=BASE_URL, download_chunk_size=1024)


@pytest.fixture
def cache():
    return InMemoryCacheStore()


@pytest_asyncio.fixture
async def client(settings, cache):
    http_client = httpx.AsyncClient()
    sdk = AvatarClient(
        settings=settings,
        http_client=http_client,
        cache=cache,
        rate_limiter=RateLimiter(requests_per_second=100),
    )
    yield sdk
    await sdk.close()
    await http_client.aclose()


class TestDiscover:

    async def test_fetches_and_caches(self, client, respx_mock):
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )

        first = await client.discover(genre="fantasy")
        second = await client.discover(genre="fantasy")

        assert route.call_count == 1
        assert first == second
        assert first.characters[0].personality_tags == ["curious", "stubborn"]
        assert first.pagination.next_cursor == "c2"

    async def test_sends_only_set_params(self, client, respx_mock):
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )

        await client.discover(limit=5, genre="sci-fi")

        params = route.calls.last.request.url.params
        assert dict(params) == {"limit": "5", "genre": "sci-fi"}

    async def test_sends_falsy_but_set_params(self, client, respx_mock):
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )

        await client.discover(limit=0, genre="")

        params = route.calls.last.request.url.params
        assert dict(params) == {"limit": "0", "genre": ""}

    async def test_skip_cache_refetches(self, client, respx_mock):
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )

        await client.discover()
        await client.discover(skip_cache=True)

        assert route.call_count == 2

    async def test_cache_key_from_params(self, client, cache, respx_mock):
        respx_mock.get(DISCOVER_URL).mock(return_value=httpx.Response(200, json=DISCOVER_JSON))

        await client.discover(cursor="abc", language="en")

        cached = await cache.get_expiring(CacheKind.DISCOVER, "discover:limit=20:cursor=abc:language=en")
        assert json.loads(cached) == DISCOVER_JSON

    async def test_api_error(self, client, respx_mock):
        respx_mock.get(DISCOVER_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(APIError) as exc_info:
            await client.discover()
        assert exc_info.value.status_code == 503

    async def test_unexpected_payload(self, client, respx_mock):
        respx_mock.get(DISCOVER_URL).mock(return_value=httpx.Response(200, json={"nope": 1}))

        with pytest.raises(APIError, match="Unexpected API response"):
            await client.discover()

    async def test_cache_failure_falls_through_to_network(self, settings, respx_mock):
        broken = MagicMock(spec=CacheStore)
        broken.get_expiring = AsyncMock(side_effect=CacheError("read"))
        broken.set_expiring = AsyncMock(side_effect=CacheError("write"))
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )

        async with httpx.AsyncClient() as http_client:
            sdk = AvatarClient(settings=settings, http_client=http_client, cache=broken)
            result = await sdk.discover()

        assert route.call_count == 1
        assert result.characters[0].id == "soren"

    async def test_cache_disabled(self, respx_mock):
        settings = Settings(base_url=BASE_URL, cache_enabled=False)
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )

        async with AvatarClient(settings=settings) as sdk:
            await sdk.discover()
            await sdk.discover()
            assert (await sdk.get_cache_stats()).discover_entries == 0

        assert route.call_count == 2

    async def test_rate_limited(self, settings, cache, respx_mock):
        route = respx_mock.get(DISCOVER_URL).mock(
            return_value=httpx.Response(200, json=DISCOVER_JSON)
        )
        limiter = RateLimiter(requests_per_second=0.001, max_burst=1, queue_requests=False)

        async with httpx.AsyncClient() as http_client:
            sdk = AvatarClient(settings=settings, http_client=http_client, cache=cache, rate_limiter=limiter)
            await sdk.discover()
            # Served from cache, so no token is needed.
            await sdk.discover()
            with pytest.raises(RateLimitedError):
                await sdk.discover(skip_cache=True)

        assert route.call_count == 1


class TestGetCharacter:

    async def test_fetches_and_caches(self, client, respx_mock):
        route = respx_mock.get(CHARACTER_URL).mock(
            return_value=httpx.Response(200, json=character_json())
        )

        character = await client.get_character("soren")
        again = await client.get_character("soren")

        assert route.call_count == 1
        assert character.public_model.full_url == FULL_URL
        assert again == character

    async def test_skip_cache_refetches(self, client, respx_mock):
        route = respx_mock.get(CHARACTER_URL).mock(
            return_value=httpx.Response(200, json=character_json())
        )

        await client.get_character("soren")
        await client.get_character("soren", skip_cache=True)

        assert route.call_count == 2

    async def test_empty_id(self, client):
        with pytest.raises(NotFoundError, match="required"):
            await client.get_character("")

    async def test_not_found_uses_server_message(self, client, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(
            return_value=httpx.Response(404, json={"error": "No such character"})
        )

        with pytest.raises(NotFoundError, match="No such character"):
            await client.get_character("soren")

    async def test_not_found_without_body(self, client, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(404, text="gone"))

        with pytest.raises(NotFoundError, match="Character not found: soren"):
            await client.get_character("soren")

    async def test_transport_error(self, client, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(NetworkError) as exc_info:
            await client.get_character("soren")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


class TestDownloadModel:

    async def test_downloads_and_caches(self, client, cache, respx_mock, model_bundle):
        character_route = respx_mock.get(CHARACTER_URL).mock(
            return_value=httpx.Response(200, json=character_json())
        )
        bundle_route = respx_mock.get(FULL_URL).mock(
            return_value=httpx.Response(200, content=model_bundle)
        )

        model = await client.download_model("soren")
        cached = await client.download_model("soren")

        assert model.character_id == "soren"
        assert model.model_type == ModelType.FULL
        assert model.size == len(model_bundle)
        assert model.files.skeleton["skeleton"]["spine"] == "4.1"
        assert cached.files.entries == model.files.entries
        assert character_route.call_count == 1
        assert bundle_route.call_count == 1
        assert await cache.get_durable("soren:full") == model_bundle

    async def test_base_prefers_base_url(self, client, respx_mock, model_bundle):
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        route = respx_mock.get(BASE_MODEL_URL).mock(
            return_value=httpx.Response(200, content=model_bundle)
        )

        model = await client.download_model("soren", model_type="base")

        assert route.called
        assert model.model_type == ModelType.BASE

    async def test_falls_back_to_other_variant(self, client, respx_mock, model_bundle):
        respx_mock.get(CHARACTER_URL).mock(
            return_value=httpx.Response(200, json=character_json({"status": "base_ready", "baseUrl": BASE_MODEL_URL}))
        )
        route = respx_mock.get(BASE_MODEL_URL).mock(
            return_value=httpx.Response(200, content=model_bundle)
        )

        await client.download_model("soren", model_type=ModelType.FULL)

        assert route.called

    async def test_model_not_available(self, client, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(
            return_value=httpx.Response(200, json=character_json({"status": "failed"}))
        )

        with pytest.raises(ModelNotAvailableError, match="'full' not available"):
            await client.download_model("soren")

    async def test_rejects_non_bundle(self, client, cache, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        respx_mock.get(FULL_URL).mock(
            return_value=httpx.Response(200, content=b"PK\x03\x04" + b"\x00" * 32)
        )

        with pytest.raises(InvalidBundleError, match="not a valid .varie bundle"):
            await client.download_model("soren")
        assert await cache.get_durable("soren:full") is None

    async def test_rejects_bundle_missing_parts(self, client, cache, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        respx_mock.get(FULL_URL).mock(
            return_value=httpx.Response(200, content=encode_bundle({"only.json": b"{}"}))
        )

        with pytest.raises(InvalidBundleError, match="No .atlas file"):
            await client.download_model("soren")
        assert await cache.get_durable("soren:full") is None

    async def test_download_failure(self, client, respx_mock):
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        respx_mock.get(FULL_URL).mock(return_value=httpx.Response(404))

        with pytest.raises(NetworkError, match="Failed to download model: 404"):
            await client.download_model("soren")

    async def test_progress_reporting(self, client, respx_mock):
        bundle = encode_bundle({
            "s.json": b"{}",
            "s.atlas": b"atlas",
            "s.png": b"\x89PNG" + b"\x00" * 5000,
        })
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        respx_mock.get(FULL_URL).mock(return_value=httpx.Response(200, content=bundle))
        updates = []

        model = await client.download_model("soren", on_progress=updates.append)

        assert model.size == len(bundle)
        assert len(updates) > 1
        assert [u.loaded for u in updates] == sorted(u.loaded for u in updates)
        assert updates[-1].loaded == len(bundle)
        assert updates[-1].total == len(bundle)
        assert updates[-1].percent == 100

    async def test_corrupt_cached_model_is_refetched(self, client, cache, respx_mock, model_bundle):
        await cache.set_durable("soren:full", b"VARI\x01\x00")
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        route = respx_mock.get(FULL_URL).mock(return_value=httpx.Response(200, content=model_bundle))

        model = await client.download_model("soren")
        again = await client.download_model("soren")

        assert model.size == len(model_bundle)
        assert again.files.entries == model.files.entries
        assert route.call_count == 1
        assert await cache.get_durable("soren:full") == model_bundle

    async def test_use_cache_false_skips_cache(self, client, cache, respx_mock, model_bundle):
        respx_mock.get(CHARACTER_URL).mock(return_value=httpx.Response(200, json=character_json()))
        route = respx_mock.get(FULL_URL).mock(return_value=httpx.Response(200, content=model_bundle))

        await client.download_model("soren", use_cache=False)
        await client.download_model("soren", use_cache=False)

        assert route.call_count == 2
        assert await cache.get_durable("soren:full") is None


class TestMaintenance:

    async def test_clear_and_stats(self, client, respx_mock):
        respx_mock.get(DISCOVER_URL).mock(return_value=httpx.Response(200, json=DISCOVER_JSON))
        await client.discover()
        assert (await client.get_cache_stats()).discover_entries == 1

        await client.clear_cache()

        stats = await client.get_cache_stats()
        assert stats.discover_entries == 0
        assert stats.total_size_bytes == 0

    async def test_maintenance_errors_propagate(self, settings):
        broken = MagicMock(spec=CacheStore)
        broken.clear = AsyncMock(side_effect=CacheError("clear"))
        broken.stats = AsyncMock(side_effect=CacheError("count"))

        async with httpx.AsyncClient() as http_client:
            sdk = AvatarClient(settings=settings, http_client=http_client, cache=broken)
            with pytest.raises(CacheError):
                await sdk.clear_cache()
            with pytest.raises(CacheError):
                await sdk.get_cache_stats()

    async def test_rate_limit_status(self, settings):
        limiter = RateLimiter(requests_per_second=1, max_burst=3)
        async with httpx.AsyncClient() as http_client:
            sdk = AvatarClient(settings=settings, http_client=http_client, rate_limiter=limiter)
            await limiter.acquire()
            status = sdk.get_rate_limit_status()

        assert status.max_tokens == 3
        assert status.tokens_available == 2
        assert status.queue_depth == 0

    async def test_close_releases_owned_client(self, settings):
        sdk = AvatarClient(settings=settings)
        await sdk.close()
        assert sdk._http_client.is_closed
