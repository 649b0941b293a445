from __future__ import annotations

import math
import time
from datetime import UTC, datetime, timedelta, timezone

import pytest
from tally.clock import current_date, current_hour
from tally.events import build_observation, elapsed_ms
from tally.models import UNKNOWN_ROUTE


def utc_dt(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


def test_current_date_is_utc_without_padding() -> None:
    assert current_date(utc_dt(2024, 1, 2, 23, 30)) == "1/2/2024"
    assert current_date(utc_dt(2024, 11, 25)) == "11/25/2024"

    # 01:00 at UTC+5 is still the previous day in UTC.
    plus_five = timezone(timedelta(hours=5))
    assert current_date(datetime(2024, 3, 1, 1, 0, tzinfo=plus_five)) == "2/29/2024"


def test_current_hour_is_local_hour_string() -> None:
    moment = utc_dt(2024, 1, 2, 13)
    assert current_hour(moment) == str(moment.astimezone().hour)

    # Naive datetimes are read as UTC.
    assert current_hour(datetime(2024, 1, 2, 7, 59)) == current_hour(
        utc_dt(2024, 1, 2, 7, 59)
    )


def test_naive_datetimes_bucket_like_utc() -> None:
    naive = datetime(2024, 3, 1, 23, 30)
    aware = utc_dt(2024, 3, 1, 23, 30)

    assert current_date(naive) == current_date(aware) == "3/1/2024"
    assert current_hour(naive) == current_hour(aware)
    assert current_hour(naive) == str(aware.astimezone().hour)


def test_build_observation_populates_every_field() -> None:
    moment = utc_dt(2024, 1, 2, 13, 5)

    obs = build_observation("get", "/users/{user_id}", 200, 12.345, now=moment)

    assert obs.method == "GET"
    assert obs.route == "/users/{user_id}"
    assert obs.status_code == 200
    assert obs.date == "1/2/2024"
    assert obs.hour == str(moment.astimezone().hour)
    assert obs.response_time_ms == 12.345


@pytest.mark.parametrize("route", [None, ""])
def test_build_observation_uses_sentinel_for_unresolved_route(route) -> None:
    obs = build_observation("POST", route, 404, 1.0)

    assert obs.route == UNKNOWN_ROUTE


@pytest.mark.parametrize("latency", [-3.0, math.nan, math.inf])
def test_build_observation_clamps_invalid_latency(latency) -> None:
    assert build_observation("GET", "/", 200, latency).response_time_ms == 0.0


def test_observation_is_immutable() -> None:
    obs = build_observation("GET", "/", 200, 1.0)

    with pytest.raises(Exception):
        obs.status_code = 500  # type: ignore[misc]


def test_elapsed_ms_measures_from_perf_counter() -> None:
    start = time.perf_counter() - 0.25

    assert 250.0 <= elapsed_ms(start) < 10_000.0
