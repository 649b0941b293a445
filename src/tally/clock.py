"""Calendar helpers used to bucket observations.

Both helpers take an optional instant. Naive datetimes are read as UTC, so
one instant always yields a consistent date and hour.
"""

from __future__ import annotations

from datetime import UTC, datetime


def _as_utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now.astimezone(UTC)


def current_date(now: datetime | None = None) -> str:
    """Return the UTC calendar date as M/D/YYYY (no zero padding)."""
    moment = _as_utc(now)
    return f"{moment.month}/{moment.day}/{moment.year}"


def current_hour(now: datetime | None = None) -> str:
    """Return the local hour of day as "0".."23"."""
    return str(_as_utc(now).astimezone().hour)
