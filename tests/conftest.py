"""Shared fixtures for the SDK test suite."""

import asyncio
import json

import pytest

from avatar_sdk.core.bundle import encode_bundle


class FakeClock:
    """Manually advanced clock; sleeping advances it instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


async def sleep_forever(seconds: float) -> None:
    """Drain-task sleep that never returns until cancelled."""
    await asyncio.Event().wait()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def model_bundle() -> bytes:
    """A valid bundle holding a skeleton, an atlas and a texture."""
    return encode_bundle({
        "model/skeleton.json": json.dumps({"skeleton": {"spine": "4.1"}, "bones": []}).encode(),
        "model/skeleton.atlas": b"skeleton.png\nsize: 2,2\n",
        "model/skeleton.png": b"\x89PNG\r\n\x1a\n fake texture",
    })


@pytest.fixture
def blocking_sleep():
    return sleep_forever
