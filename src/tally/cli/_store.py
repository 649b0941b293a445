"""Aggregator construction for CLI commands."""

from tally.config import get_settings
from tally.engine import Aggregator


def build_aggregator(
    redis_url: str | None = None, key_prefix: str | None = None
) -> Aggregator:
    """Aggregator over the configured Redis store, with CLI overrides applied."""
    overrides: dict[str, str] = {}
    if redis_url:
        overrides["redis_url"] = redis_url
    if key_prefix is not None:
        overrides["key_prefix"] = key_prefix
    settings = get_settings().model_copy(update=overrides)
    return Aggregator.from_settings(settings)
