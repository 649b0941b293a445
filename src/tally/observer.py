"""Request observer and Starlette middleware.

The middleware times every request, resolves its route template and hands the
finished request to a RequestObserver, which builds the observation and
applies it to all four dimensions. Metrics never block or fail a response:

- background mode (default): the apply runs as a tracked task that
  ``drain()`` awaits on shutdown
- awaited mode: the apply is attached to the response as a background task,
  so the server runs it after the body has been sent

Requests whose endpoint raises are recorded with status 500, the status the
outer error middleware sends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from starlette.background import BackgroundTask, BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from tally.config import DEFAULT_DRAIN_TIMEOUT, Settings, get_settings
from tally.engine import Aggregator
from tally.errors import StoreError
from tally.events import build_observation, elapsed_ms
from tally.keys import Dimension
from tally.models import UNKNOWN_ROUTE, Observation

logger = logging.getLogger(__name__)

UNHANDLED_ERROR_STATUS = 500


@dataclass
class ObserverConfig:
    """Controls how finished requests are handed to the aggregator."""

    background: bool = True
    drain_timeout_seconds: float = DEFAULT_DRAIN_TIMEOUT

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ObserverConfig:
        settings = settings or get_settings()
        return cls(
            background=settings.observer_background,
            drain_timeout_seconds=settings.drain_timeout_seconds,
        )


class RequestObserver:
    """Builds observations for finished requests and applies them."""

    def __init__(
        self,
        aggregator: Aggregator,
        config: ObserverConfig | None = None,
    ) -> None:
        self.aggregator = aggregator
        self._config = config or ObserverConfig()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def background(self) -> bool:
        return self._config.background

    @property
    def pending(self) -> int:
        """Number of background applies still running."""
        return len(self._tasks)

    async def observe(
        self,
        method: str,
        route: str | None,
        status_code: int,
        response_time_ms: float,
    ) -> None:
        """Record a finished request, in the background or inline per config."""
        observation = build_observation(method, route, status_code, response_time_ms)
        if self.background:
            self.schedule(observation)
        else:
            await self.record(observation)

    def schedule(self, observation: Observation) -> None:
        """Apply an observation in a tracked task."""
        task = asyncio.create_task(self.record(observation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def record(
        self, observation: Observation
    ) -> dict[Dimension, StoreError | None]:
        """Apply an observation now; errors are logged, never raised."""
        try:
            return await self.aggregator.apply_all(observation)
        except Exception:
            logger.exception("Unexpected error while recording request metrics")
            return {}

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background applies, including ones scheduled meanwhile."""
        timeout = self._config.drain_timeout_seconds if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while self._tasks:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.wait(list(self._tasks), timeout=remaining)

        pending = list(self._tasks)
        if not pending:
            return
        logger.warning(
            f"{len(pending)} metrics update(s) still running after {timeout}s; "
            "cancelling"
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


def resolve_route(request: Request) -> str:
    """Route template of the matched endpoint, prefixed by its mount path."""
    route = request.scope.get("route")
    if route is None:
        return UNKNOWN_ROUTE

    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if not isinstance(template, str) or not template:
        return UNKNOWN_ROUTE

    base = request.scope.get("root_path") or ""
    if base == "/":
        base = ""
    return f"{base.rstrip('/')}{template}"


def _chain(
    existing: BackgroundTask | None, task: BackgroundTask
) -> BackgroundTask:
    if existing is None:
        return task
    if isinstance(existing, BackgroundTasks):
        existing.tasks.append(task)
        return existing
    return BackgroundTasks(tasks=[existing, task])


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records every finished request."""

    def __init__(self, app: Any, observer: RequestObserver) -> None:
        super().__init__(app)
        self.observer = observer

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # No response to attach to; the error middleware outside sends it.
            self._track(
                request,
                UNHANDLED_ERROR_STATUS,
                elapsed_ms(start),
                response=None,
            )
            raise

        self._track(request, response.status_code, elapsed_ms(start), response)
        return response

    def _track(
        self,
        request: Request,
        status_code: int,
        latency_ms: float,
        response: Response | None,
    ) -> None:
        try:
            observation = build_observation(
                request.method, resolve_route(request), status_code, latency_ms
            )
            if self.observer.background or response is None:
                self.observer.schedule(observation)
            else:
                response.background = _chain(
                    response.background,
                    BackgroundTask(self.observer.record, observation),
                )
        except Exception:
            # Never fail requests for tracking.
            logger.exception("Failed to record request metrics")


def instrument(app: Any, observer: RequestObserver) -> RequestObserver:
    """Add MetricsMiddleware to a Starlette or FastAPI app."""
    app.add_middleware(MetricsMiddleware, observer=observer)
    return observer
