"""Exceptions raised by the aggregation engine and its summary store."""

from __future__ import annotations


class TallyError(Exception):
    """Base exception for tally errors."""

    pass


class StoreError(TallyError):
    """Raised when the summary store cannot complete an operation."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        self.key = key
        super().__init__(message)


class StoreUnavailable(StoreError):
    """Raised on transport failures, timeouts and exhausted conflict retries."""

    pass


class WriteConflict(StoreError):
    """Raised when a compare-and-set write loses to a concurrent writer."""

    def __init__(self, key: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"Summary '{key}' changed concurrently ({attempts} attempts)", key=key
        )


class MalformedSummary(TallyError):
    """Raised when a stored summary cannot be decoded."""

    def __init__(self, key: str | None, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed summary '{key}': {reason}")


class UnknownDimension(TallyError, ValueError):
    """Raised for a dimension name outside the four known rollups."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Unknown dimension '{value}'")
