"""Build observations from finished requests."""

from __future__ import annotations

import math
import time
from datetime import UTC, datetime

from tally.clock import current_date, current_hour
from tally.models import UNKNOWN_ROUTE, Observation


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return (time.perf_counter() - start) * 1000


def build_observation(
    method: str,
    route: str | None,
    status_code: int,
    response_time_ms: float,
    *,
    now: datetime | None = None,
) -> Observation:
    """
    Build the observation for one completed request.

    The date is taken in UTC and the hour in local time from the same instant.
    An unresolved route becomes ``UNKNOWN_ROUTE``.
    """
    moment = now if now is not None else datetime.now(UTC)
    latency = float(response_time_ms)
    if not math.isfinite(latency) or latency < 0:
        latency = 0.0
    return Observation(
        method=(method or "").upper() or "UNKNOWN",
        route=route or UNKNOWN_ROUTE,
        status_code=int(status_code),
        date=current_date(moment),
        hour=current_hour(moment),
        response_time_ms=latency,
    )
