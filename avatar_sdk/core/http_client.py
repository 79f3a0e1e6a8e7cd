"""Shared HTTP client management for connection pooling.

The SDK performs all byte-level fetches through an ``httpx.AsyncClient``.
A single client can be shared across ``AvatarClient`` instances with
``init_http_client()``, or created per client with ``create_http_client()``.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from avatar_sdk.core.config import Settings, settings


# Shared HTTP client for connection pooling
_shared_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client instance.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _shared_http_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Use 'async with init_http_client()'."
        )
    return _shared_http_client


@asynccontextmanager
async def init_http_client(
    config: Settings | None = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

        async with init_http_client():
            async with AvatarClient(http_client=get_http_client()) as client:
                ...
    """
    global _shared_http_client

    _shared_http_client = create_http_client(config=config)
    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None


def create_http_client(config: Settings | None = None, **kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done.

    Args:
        config: Settings to read defaults from (module settings if omitted).
        **kwargs: Override default settings. Can include:
            - timeout: Single timeout value (overrides all granular timeouts)
            - connect_timeout, read_timeout, write_timeout, pool_timeout
            - max_connections, max_keepalive_connections, keepalive_expiry

    Returns:
        A new httpx.AsyncClient instance.
    """
    cfg = config or settings

    timeout_override = kwargs.get("timeout")
    if timeout_override is not None:
        timeout = httpx.Timeout(timeout_override)
    else:
        timeout = httpx.Timeout(
            cfg.httpx_timeout,
            connect=kwargs.get("connect_timeout", cfg.httpx_connect_timeout),
            read=kwargs.get("read_timeout", cfg.httpx_read_timeout),
            write=kwargs.get("write_timeout", cfg.httpx_write_timeout),
            pool=kwargs.get("pool_timeout", cfg.httpx_pool_timeout),
        )

    limits = httpx.Limits(
        max_connections=kwargs.get("max_connections", cfg.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", cfg.httpx_max_keepalive_connections
        ),
        keepalive_expiry=kwargs.get("keepalive_expiry", cfg.httpx_keepalive_expiry),
    )
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=True,
        headers={"User-Agent": "avatar-sdk-python/0.1.0"},
    )
