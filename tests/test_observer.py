from __future__ import annotations

import asyncio
import json

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request
from tally.config import Settings
from tally.engine import Aggregator
from tally.errors import StoreUnavailable
from tally.models import UNKNOWN_ROUTE
from tally.observer import (
    MetricsMiddleware,
    ObserverConfig,
    RequestObserver,
    instrument,
    resolve_route,
)
from tally.store import InMemorySummaryStore, RedisSummaryStore


class _RouteStub:
    path_format = "/users/{user_id}"


def _request(path: str, **scope_overrides) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "headers": [],
        "client": ("127.0.0.1", 12345),
        "server": ("testserver", 80),
    }
    scope.update(scope_overrides)
    return Request(scope)


def _app(observer: RequestObserver) -> FastAPI:
    app = FastAPI()
    router = APIRouter(prefix="/users")

    @router.get("/{user_id}")
    async def get_user(user_id: int) -> dict:
        return {"id": user_id}

    @app.post("/orders", status_code=201)
    async def create_order() -> dict:
        return {"ok": True}

    app.include_router(router)
    instrument(app, observer)
    return app


def test_resolve_route_prefers_route_template() -> None:
    request = _request("/users/123", route=_RouteStub())

    assert resolve_route(request) == "/users/{user_id}"


def test_resolve_route_prefixes_mount_path() -> None:
    request = _request("/api/users/123", route=_RouteStub(), root_path="/api")
    assert resolve_route(request) == "/api/users/{user_id}"

    request = _request("/users/123", route=_RouteStub(), root_path="/")
    assert resolve_route(request) == "/users/{user_id}"


def test_resolve_route_falls_back_to_sentinel() -> None:
    assert resolve_route(_request("/nowhere")) == UNKNOWN_ROUTE

    class _Blank:
        path = ""

    assert resolve_route(_request("/nowhere", route=_Blank())) == UNKNOWN_ROUTE


@pytest.mark.asyncio
async def test_middleware_records_every_dimension(fake_redis) -> None:
    aggregator = Aggregator(RedisSummaryStore(client=fake_redis))
    observer = RequestObserver(aggregator, ObserverConfig(background=False))
    app = _app(observer)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        assert (await client.get("/users/1")).status_code == 200
        assert (await client.get("/users/2")).status_code == 200
        assert (await client.post("/orders")).status_code == 201
        assert (await client.get("/missing")).status_code == 404

    total = json.loads(await fake_redis.get("total"))
    assert {
        (row["method"], row["route"], row["statusCode"]): row["requestCount"]
        for row in total
    } == {
        ("GET", "/users/{user_id}", 200): 2,
        ("POST", "/orders", 201): 1,
        ("GET", UNKNOWN_ROUTE, 404): 1,
    }

    response_times = json.loads(await fake_redis.get("response-times"))
    assert len(response_times) == 4
    assert all(row["responseTimeMs"] >= 0 for row in response_times)
    assert len(json.loads(await fake_redis.get("daily"))) == 3
    assert len(json.loads(await fake_redis.get("hourly"))) == 3


@pytest.mark.asyncio
async def test_background_observer_drains_pending_updates() -> None:
    store = InMemorySummaryStore()
    observer = RequestObserver(Aggregator(store))
    app = _app(observer)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        for _ in range(5):
            await client.post("/orders")

    await observer.drain()

    assert observer.pending == 0
    rows = await observer.aggregator.read("total")
    assert rows[0].request_count == 5


@pytest.mark.asyncio
async def test_store_outage_does_not_fail_requests(caplog) -> None:
    class _DownStore(InMemorySummaryStore):
        async def get(self, key: str) -> bytes | None:
            raise StoreUnavailable("redis down", key=key)

    observer = RequestObserver(
        Aggregator(_DownStore()), ObserverConfig(background=False)
    )
    app = _app(observer)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/users/7")

    assert response.status_code == 200
    assert response.json() == {"id": 7}
    assert "redis down" in caplog.text


@pytest.mark.asyncio
async def test_unexpected_errors_are_logged_not_raised(caplog) -> None:
    class _BrokenAggregator(Aggregator):
        async def apply_all(self, observation):  # noqa: ANN001
            raise RuntimeError("boom")

    observer = RequestObserver(
        _BrokenAggregator(InMemorySummaryStore()), ObserverConfig(background=False)
    )

    await observer.observe("GET", "/", 200, 1.0)

    assert "Unexpected error while recording request metrics" in caplog.text


@pytest.mark.asyncio
async def test_drain_cancels_updates_past_timeout(caplog) -> None:
    class _HangingStore(InMemorySummaryStore):
        async def get(self, key: str) -> bytes | None:
            await asyncio.sleep(10)
            return None

    observer = RequestObserver(
        Aggregator(_HangingStore(), operation_timeout=None),
        ObserverConfig(drain_timeout_seconds=0.05),
    )

    await observer.observe("GET", "/", 200, 1.0)
    assert observer.pending == 1

    await observer.drain()

    assert observer.pending == 0
    assert "still running" in caplog.text


@pytest.mark.asyncio
async def test_middleware_records_unhandled_errors_as_500() -> None:
    aggregator = Aggregator(InMemorySummaryStore())
    observer = RequestObserver(aggregator, ObserverConfig(background=False))
    app = FastAPI()

    @app.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("boom")

    instrument(app, observer)

    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://testserver",
    ) as client:
        response = await client.get("/boom")

    assert response.status_code == 500
    await observer.drain()

    rows = await aggregator.read("total")
    assert [(r.route, r.status_code, r.request_count) for r in rows] == [
        ("/boom", 500, 1)
    ]
    times = await aggregator.read("response-times")
    assert times[0].response_time_ms >= 0


@pytest.mark.asyncio
async def test_awaited_mode_sends_body_before_store_write() -> None:
    release = asyncio.Event()

    class _SlowStore(InMemorySummaryStore):
        async def get(self, key: str) -> bytes | None:
            await release.wait()
            return await super().get(key)

    store = _SlowStore()
    observer = RequestObserver(
        Aggregator(store, operation_timeout=None), ObserverConfig(background=False)
    )
    app = _app(observer)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/users/3",
        "raw_path": b"/users/3",
        "root_path": "",
        "query_string": b"",
        "headers": [(b"host", b"testserver")],
        "client": ("127.0.0.1", 12345),
        "server": ("testserver", 80),
    }
    request_sent = False
    disconnected = asyncio.Event()
    messages: list[dict] = []
    body_sent = asyncio.Event()

    async def receive() -> dict:
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(message: dict) -> None:
        messages.append(message)
        if message["type"] == "http.response.body" and not message.get(
            "more_body", False
        ):
            body_sent.set()

    app_task = asyncio.create_task(app(scope, receive, send))
    await asyncio.wait_for(body_sent.wait(), timeout=2.0)
    await asyncio.sleep(0.05)

    assert messages[0]["status"] == 200
    body = b"".join(m.get("body", b"") for m in messages[1:])
    assert json.loads(body) == {"id": 3}
    assert store.snapshot() == {}
    assert not app_task.done()

    release.set()
    await asyncio.wait_for(app_task, timeout=2.0)
    disconnected.set()

    rows = await observer.aggregator.read("total")
    assert [(r.route, r.request_count) for r in rows] == [("/users/{user_id}", 1)]


@pytest.mark.asyncio
async def test_drain_waits_for_updates_scheduled_while_draining() -> None:
    store = InMemorySummaryStore()

    class _FollowUpAggregator(Aggregator):
        followed_up = False

        async def apply_all(self, observation):  # noqa: ANN001
            await asyncio.sleep(0.01)
            if not self.followed_up:
                self.followed_up = True
                observer.schedule(observation)
            return await super().apply_all(observation)

    observer = RequestObserver(_FollowUpAggregator(store))

    await observer.observe("GET", "/", 200, 1.0)
    await observer.drain()

    assert observer.pending == 0
    rows = await observer.aggregator.read("total")
    assert rows[0].request_count == 2


def test_observer_config_from_settings() -> None:
    config = ObserverConfig.from_settings(
        Settings(observer_background=False, drain_timeout_seconds=1.5)
    )

    assert config == ObserverConfig(background=False, drain_timeout_seconds=1.5)


def test_instrument_adds_middleware() -> None:
    app = FastAPI()
    observer = RequestObserver(Aggregator(InMemorySummaryStore()))

    assert instrument(app, observer) is observer
    assert any(m.cls is MetricsMiddleware for m in app.user_middleware)
