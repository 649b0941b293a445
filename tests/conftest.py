from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from tally.models import Observation


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def fake_redis(fake_server: FakeServer) -> AsyncIterator[FakeRedis]:
    client = FakeRedis(server=fake_server, decode_responses=False)
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def make_observation() -> Callable[..., Observation]:
    def _make(**overrides: Any) -> Observation:
        fields: dict[str, Any] = {
            "method": "GET",
            "route": "/users",
            "status_code": 200,
            "date": "1/2/2024",
            "hour": "13",
            "response_time_ms": 12.5,
        }
        fields.update(overrides)
        return Observation(**fields)

    return _make
