"""Merge rules and JSON codec for dimension summaries.

A summary is an ordered list of rows stored as one JSON array. Counted
dimensions keep one row per grouping key and bump its ``requestCount``;
the response-time dimension appends one raw row per observation.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from pydantic import TypeAdapter, ValidationError

from tally.errors import MalformedSummary
from tally.keys import Dimension, parse_dimension
from tally.models import (
    DailyRow,
    GroupingKey,
    HourlyRow,
    Observation,
    ResponseTimeRow,
    Summary,
    SummaryRow,
    TotalRow,
)

ROW_MODELS: dict[Dimension, type[SummaryRow]] = {
    Dimension.TOTAL: TotalRow,
    Dimension.DAILY: DailyRow,
    Dimension.HOURLY: HourlyRow,
    Dimension.RESPONSE_TIMES: ResponseTimeRow,
}

_ROW_ADAPTERS: dict[Dimension, TypeAdapter] = {
    dimension: TypeAdapter(list[model]) for dimension, model in ROW_MODELS.items()
}


def grouping_key(
    dimension: str | Dimension, observation: Observation
) -> GroupingKey | None:
    """Fields an observation is matched on; None for the append-only dimension."""
    dimension = parse_dimension(dimension)
    if dimension is Dimension.RESPONSE_TIMES:
        return None
    return ROW_MODELS[dimension].from_observation(observation).grouping_key()


def merge(
    dimension: str | Dimension,
    rows: Sequence[SummaryRow],
    observation: Observation,
) -> Summary:
    """Fold one observation into a summary, returning a new list.

    The input rows are left untouched. For counted dimensions the row whose
    grouping key equals the observation's is incremented; otherwise a new row
    with a count of one is appended.
    """
    dimension = parse_dimension(dimension)
    model = ROW_MODELS[dimension]
    merged: Summary = list(rows)

    if dimension is Dimension.RESPONSE_TIMES:
        merged.append(ResponseTimeRow.from_observation(observation))
        return merged

    candidate = model.from_observation(observation)
    key = candidate.grouping_key()
    for index, row in enumerate(merged):
        if isinstance(row, TotalRow) and row.grouping_key() == key:
            merged[index] = row.incremented()
            return merged

    merged.append(candidate.incremented())
    return merged


def decode_summary(
    dimension: str | Dimension,
    raw: bytes | str | None,
    *,
    key: str | None = None,
) -> Summary:
    """Decode a stored summary. Absent values decode to an empty list."""
    dimension = parse_dimension(dimension)
    if raw is None:
        return []
    try:
        return list(_ROW_ADAPTERS[dimension].validate_json(raw))
    except ValidationError as e:
        raise MalformedSummary(key or dimension.value, _describe(e)) from e


def encode_summary(rows: Sequence[SummaryRow]) -> bytes:
    """Serialize rows to the stored JSON form (camelCase, unset counts omitted)."""
    payload = [
        row.model_dump(mode="json", by_alias=True, exclude_none=True) for row in rows
    ]
    return json.dumps(payload, separators=(",", ":")).encode()


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    return f"{location}: {first.get('msg', 'invalid value')}"
