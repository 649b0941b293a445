"""Reset command for deleting stored summaries."""

import asyncio

import typer

from tally.cli._console import error, setup_logging, success
from tally.cli._store import build_aggregator
from tally.engine import Aggregator
from tally.errors import StoreError, UnknownDimension
from tally.keys import ALL_DIMENSIONS, Dimension, parse_dimension


async def _reset(aggregator: Aggregator, dimensions: list[Dimension]) -> None:
    try:
        for dimension in dimensions:
            await aggregator.reset(dimension)
    finally:
        await aggregator.store.close()


def reset(
    dimension: str = typer.Argument(
        ..., help="daily, hourly, total, response-times or all"
    ),
    redis_url: str | None = typer.Option(
        None,
        "--redis-url",
        help="Redis URL (overrides TALLY_REDIS_URL)",
    ),
    key_prefix: str | None = typer.Option(
        None,
        "--key-prefix",
        help="Summary key prefix (overrides TALLY_KEY_PREFIX)",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt",
    ),
) -> None:
    """Delete the stored summary for one dimension (or all of them)."""
    setup_logging()

    if dimension == "all":
        dimensions = list(ALL_DIMENSIONS)
    else:
        try:
            dimensions = [parse_dimension(dimension)]
        except UnknownDimension as e:
            error(str(e))
            raise typer.Exit(1)

    aggregator = build_aggregator(redis_url, key_prefix)
    keys = [aggregator.key_for(d) for d in dimensions]
    if not yes and not typer.confirm(f"Delete {', '.join(keys)}?"):
        raise typer.Exit(1)

    try:
        asyncio.run(_reset(aggregator, dimensions))
    except StoreError as e:
        error(f"Store unavailable: {e}")
        raise typer.Exit(1)

    for key in keys:
        success(f"Deleted {key}")
