"""Aggregation engine: fold observations into persisted summaries.

Each apply is a read-modify-write of one dimension's summary. Two guards keep
concurrent applies from losing updates:

- a per-dimension asyncio.Lock serializes applies within this process
- the write is a compare-and-set against the value that was read, so a
  concurrent writer in another process forces a re-read and re-merge

A store call that outlives the operation timeout is a StoreUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable
from typing import TypeVar

from tally.config import (
    DEFAULT_CONFLICT_BACKOFF,
    DEFAULT_MAX_CONFLICT_RETRIES,
    DEFAULT_OPERATION_TIMEOUT,
    Settings,
    get_settings,
)
from tally.errors import MalformedSummary, StoreError, StoreUnavailable, WriteConflict
from tally.keys import ALL_DIMENSIONS, Dimension, parse_dimension, summary_key
from tally.models import Observation, Summary
from tally.store import BaseSummaryStore, create_store
from tally.summary import decode_summary, encode_summary, merge

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Aggregator:
    """
    Applies observations to the four dimension summaries in a store.

    Example:
        aggregator = Aggregator(RedisSummaryStore("redis://localhost:6379"))
        await aggregator.apply(Dimension.TOTAL, observation)
        failures = await aggregator.apply_all(observation)
    """

    def __init__(
        self,
        store: BaseSummaryStore,
        *,
        key_prefix: str = "",
        operation_timeout: float | None = DEFAULT_OPERATION_TIMEOUT,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        conflict_backoff: float = DEFAULT_CONFLICT_BACKOFF,
    ) -> None:
        self._store = store
        self._key_prefix = key_prefix
        self._operation_timeout = operation_timeout
        self._max_conflict_retries = max(0, max_conflict_retries)
        self._conflict_backoff = max(0.0, conflict_backoff)
        self._locks: dict[Dimension, asyncio.Lock] = {
            dimension: asyncio.Lock() for dimension in ALL_DIMENSIONS
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        store: BaseSummaryStore | None = None,
    ) -> Aggregator:
        """Build an aggregator (and, unless given, its Redis store) from settings."""
        settings = settings or get_settings()
        return cls(
            store if store is not None else create_store(settings),
            key_prefix=settings.key_prefix,
            operation_timeout=settings.operation_timeout_seconds,
            max_conflict_retries=settings.max_conflict_retries,
            conflict_backoff=settings.conflict_backoff_seconds,
        )

    @property
    def store(self) -> BaseSummaryStore:
        return self._store

    def key_for(self, dimension: str | Dimension) -> str:
        return summary_key(dimension, self._key_prefix)

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    async def apply(
        self, dimension: str | Dimension, observation: Observation
    ) -> Summary:
        """
        Fold one observation into one dimension's summary and persist it.

        Returns:
            The summary as written

        Raises:
            StoreUnavailable: If the store failed, timed out, or the write kept
                losing to concurrent writers. Nothing is written in that case.
        """
        dimension = parse_dimension(dimension)
        key = self.key_for(dimension)

        async with self._locks[dimension]:
            attempts = 0
            while True:
                attempts += 1
                raw = await self._call(self._store.get(key), key)
                rows = self._load(dimension, raw, key)
                updated = merge(dimension, rows, observation)
                payload = encode_summary(updated)

                written = await self._call(
                    self._store.compare_and_set(key, raw, payload), key
                )
                if written:
                    return updated

                conflict = WriteConflict(key, attempts)
                if attempts > self._max_conflict_retries:
                    raise StoreUnavailable(str(conflict), key=key) from conflict

                logger.debug(
                    f"{conflict}; retrying",
                    extra={
                        "dimension": dimension.value,
                        "key": key,
                        "attempts": attempts,
                    },
                )
                await asyncio.sleep(self._backoff(attempts))

    async def apply_all(
        self, observation: Observation
    ) -> dict[Dimension, StoreError | None]:
        """
        Apply an observation to every dimension independently.

        A failing dimension does not stop the others. Failures are logged and
        returned keyed by dimension (None means applied).
        """
        results = await asyncio.gather(
            *(self.apply(dimension, observation) for dimension in ALL_DIMENSIONS),
            return_exceptions=True,
        )

        outcome: dict[Dimension, StoreError | None] = {}
        for dimension, result in zip(ALL_DIMENSIONS, results, strict=True):
            if isinstance(result, StoreError):
                logger.warning(
                    f"Failed to apply observation to '{dimension}': {result}",
                    extra={"dimension": dimension.value, "key": result.key},
                )
                outcome[dimension] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome[dimension] = None
        return outcome

    # =========================================================================
    # READ / ADMIN
    # =========================================================================

    async def read(self, dimension: str | Dimension) -> Summary:
        """
        Load a dimension's summary.

        Raises:
            MalformedSummary: If the stored value cannot be decoded
            StoreUnavailable: If the store failed or timed out
        """
        dimension = parse_dimension(dimension)
        key = self.key_for(dimension)
        raw = await self._call(self._store.get(key), key)
        return decode_summary(dimension, raw, key=key)

    async def reset(self, dimension: str | Dimension) -> None:
        """Delete a dimension's summary."""
        dimension = parse_dimension(dimension)
        key = self.key_for(dimension)
        async with self._locks[dimension]:
            await self._call(self._store.delete(key), key)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _load(self, dimension: Dimension, raw: bytes | None, key: str) -> Summary:
        try:
            return decode_summary(dimension, raw, key=key)
        except MalformedSummary as e:
            logger.warning(
                f"{e}; starting '{key}' from an empty summary",
                extra={"dimension": dimension.value, "key": key},
            )
            return []

    async def _call(self, operation: Awaitable[T], key: str) -> T:
        try:
            async with asyncio.timeout(self._operation_timeout):
                return await operation
        except TimeoutError as e:
            raise StoreUnavailable(
                f"Store operation on '{key}' timed out after "
                f"{self._operation_timeout}s",
                key=key,
            ) from e

    def _backoff(self, attempt: int) -> float:
        if self._conflict_backoff <= 0:
            return 0.0
        ceiling = self._conflict_backoff * min(2 ** (attempt - 1), 32)
        return random.uniform(0, ceiling)
