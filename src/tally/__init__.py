"""Tally - request metrics rollups persisted in Redis."""

from tally.engine import Aggregator
from tally.errors import (
    MalformedSummary,
    StoreError,
    StoreUnavailable,
    TallyError,
    UnknownDimension,
    WriteConflict,
)
from tally.events import build_observation
from tally.keys import ALL_DIMENSIONS, Dimension, summary_key
from tally.models import (
    UNKNOWN_ROUTE,
    DailyRow,
    HourlyRow,
    Observation,
    ResponseTimeRow,
    Summary,
    TotalRow,
)
from tally.observer import (
    MetricsMiddleware,
    ObserverConfig,
    RequestObserver,
    instrument,
    resolve_route,
)
from tally.store import (
    BaseSummaryStore,
    InMemorySummaryStore,
    RedisSummaryStore,
    create_store,
)

__version__ = "0.1.0"

__all__ = [
    "ALL_DIMENSIONS",
    "UNKNOWN_ROUTE",
    "Aggregator",
    "BaseSummaryStore",
    "DailyRow",
    "Dimension",
    "HourlyRow",
    "InMemorySummaryStore",
    "MalformedSummary",
    "MetricsMiddleware",
    "Observation",
    "ObserverConfig",
    "RedisSummaryStore",
    "RequestObserver",
    "ResponseTimeRow",
    "StoreError",
    "StoreUnavailable",
    "Summary",
    "TallyError",
    "TotalRow",
    "UnknownDimension",
    "WriteConflict",
    "__version__",
    "build_observation",
    "create_store",
    "instrument",
    "resolve_route",
    "summary_key",
]
