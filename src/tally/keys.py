"""Summary dimensions and the store keys they live under.

Key structure:
    daily           -> JSON array of rows grouped by (method, route, status, date)
    hourly          -> JSON array of rows grouped by (method, route, status, date, hour)
    total           -> JSON array of rows grouped by (method, route, status)
    response-times  -> JSON array of raw observations, append-only

With a key prefix configured every key becomes "{prefix}:{dimension}".
"""

from __future__ import annotations

from enum import StrEnum

from tally.errors import UnknownDimension


class Dimension(StrEnum):
    """Independent rollup views maintained for every request."""

    DAILY = "daily"
    HOURLY = "hourly"
    TOTAL = "total"
    RESPONSE_TIMES = "response-times"


# Order in which the observer fires the dimensions for one request.
ALL_DIMENSIONS: tuple[Dimension, ...] = (
    Dimension.DAILY,
    Dimension.HOURLY,
    Dimension.TOTAL,
    Dimension.RESPONSE_TIMES,
)

COUNTED_DIMENSIONS: tuple[Dimension, ...] = (
    Dimension.TOTAL,
    Dimension.DAILY,
    Dimension.HOURLY,
)


def parse_dimension(value: str | Dimension) -> Dimension:
    """Resolve a dimension name, rejecting anything outside the four rollups."""
    try:
        return Dimension(value)
    except ValueError:
        raise UnknownDimension(value) from None


def summary_key(dimension: str | Dimension, prefix: str = "") -> str:
    """Build the store key holding a dimension's summary."""
    name = parse_dimension(dimension).value
    if not prefix:
        return name
    return f"{prefix}:{name}"
