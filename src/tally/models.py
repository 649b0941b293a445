"""Observation and summary row models.

Rows are a tagged variant per dimension: counted rows (total, daily, hourly)
carry a ``request_count`` and a grouping key; response-time rows are raw
observations and are never merged. Stored JSON uses camelCase field names.
"""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_ROUTE = "unknown route"

GroupingKey = tuple[str | int, ...]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Observation(_WireModel):
    """One completed request, as seen when its response finished."""

    method: str = Field(min_length=1)
    route: str = Field(min_length=1)
    status_code: int
    date: str
    hour: str
    response_time_ms: float = Field(ge=0)


class TotalRow(_WireModel):
    """All-time request count for one (method, route, status) tuple."""

    method: str
    route: str
    status_code: int
    # None until the first match; read as zero.
    request_count: int | None = Field(default=None, ge=0)

    @classmethod
    def from_observation(cls, observation: Observation) -> Self:
        return cls(
            method=observation.method,
            route=observation.route,
            status_code=observation.status_code,
        )

    @property
    def count(self) -> int:
        if self.request_count is None:
            return 0
        return self.request_count

    def grouping_key(self) -> GroupingKey:
        return (self.method, self.route, self.status_code)

    def incremented(self) -> Self:
        """Return a copy with the request count bumped by one."""
        return self.model_copy(update={"request_count": self.count + 1})


class DailyRow(TotalRow):
    """Request count for one tuple on one UTC calendar date."""

    date: str

    @classmethod
    def from_observation(cls, observation: Observation) -> Self:
        return cls(
            method=observation.method,
            route=observation.route,
            status_code=observation.status_code,
            date=observation.date,
        )

    def grouping_key(self) -> GroupingKey:
        return (self.method, self.route, self.status_code, self.date)


class HourlyRow(DailyRow):
    """Request count for one tuple within one local hour of a date."""

    hour: str

    @classmethod
    def from_observation(cls, observation: Observation) -> Self:
        return cls(
            method=observation.method,
            route=observation.route,
            status_code=observation.status_code,
            date=observation.date,
            hour=observation.hour,
        )

    def grouping_key(self) -> GroupingKey:
        return (self.method, self.route, self.status_code, self.date, self.hour)


class ResponseTimeRow(_WireModel):
    """Raw latency record; one per observation, never aggregated."""

    method: str
    route: str
    status_code: int
    date: str
    hour: str
    response_time_ms: float = Field(ge=0)

    @classmethod
    def from_observation(cls, observation: Observation) -> Self:
        return cls.model_validate(observation.model_dump())


CountedRow = TotalRow | DailyRow | HourlyRow
SummaryRow = TotalRow | DailyRow | HourlyRow | ResponseTimeRow
Summary = list[SummaryRow]


__all__ = [
    "UNKNOWN_ROUTE",
    "CountedRow",
    "DailyRow",
    "GroupingKey",
    "HourlyRow",
    "Observation",
    "ResponseTimeRow",
    "Summary",
    "SummaryRow",
    "TotalRow",
]
