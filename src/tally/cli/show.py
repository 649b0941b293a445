"""Show command for printing a dimension's summary."""

import asyncio
from statistics import fmean

import typer
from rich.box import ROUNDED
from rich.table import Table

from tally.cli._console import console, dim, error, error_panel, nl, setup_logging
from tally.cli._store import build_aggregator
from tally.engine import Aggregator
from tally.errors import MalformedSummary, StoreError, UnknownDimension
from tally.keys import Dimension, parse_dimension
from tally.models import ResponseTimeRow, Summary, TotalRow

_GROUPING_COLUMNS: dict[Dimension, tuple[str, ...]] = {
    Dimension.TOTAL: (),
    Dimension.DAILY: ("date",),
    Dimension.HOURLY: ("date", "hour"),
    Dimension.RESPONSE_TIMES: ("date", "hour"),
}


async def _read(aggregator: Aggregator, dimension: Dimension) -> Summary:
    try:
        return await aggregator.read(dimension)
    finally:
        await aggregator.store.close()


def _ordered(dimension: Dimension, rows: Summary) -> Summary:
    if dimension is Dimension.RESPONSE_TIMES:
        # Newest first.
        return list(reversed(rows))
    return sorted(
        rows,
        key=lambda row: row.count if isinstance(row, TotalRow) else 0,
        reverse=True,
    )


def render_summary(dimension: Dimension, rows: Summary, *, limit: int = 0) -> Table:
    """Build a rich table for a summary."""
    extra = _GROUPING_COLUMNS[dimension]
    table = Table(box=ROUNDED, border_style="dim", title=f"[bold]{dimension}[/bold]")
    table.add_column("Method", style="cyan")
    table.add_column("Route")
    table.add_column("Status", justify="right")
    for column in extra:
        table.add_column(column.capitalize(), style="dim")
    if dimension is Dimension.RESPONSE_TIMES:
        table.add_column("Latency (ms)", justify="right")
    else:
        table.add_column("Requests", justify="right", style="bold")

    ordered = _ordered(dimension, rows)
    if limit > 0:
        ordered = ordered[:limit]

    for row in ordered:
        cells = [row.method, row.route, str(row.status_code)]
        cells.extend(str(getattr(row, column)) for column in extra)
        if isinstance(row, ResponseTimeRow):
            cells.append(f"{row.response_time_ms:.2f}")
        else:
            cells.append(str(row.count))
        table.add_row(*cells)
    return table


def show(
    dimension: str = typer.Argument(
        ..., help="daily, hourly, total or response-times"
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
    limit: int = typer.Option(
        0,
        "--limit",
        "-n",
        help="Show at most this many rows (0 = all)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Print the stored summary for one dimension.

    Examples:
        tally show daily
        tally show response-times --limit 20
    """
    setup_logging(verbose=verbose)

    try:
        resolved = parse_dimension(dimension)
    except UnknownDimension as e:
        error(str(e))
        raise typer.Exit(1)

    aggregator = build_aggregator(redis_url, key_prefix)
    try:
        rows = asyncio.run(_read(aggregator, resolved))
    except MalformedSummary as e:
        error_panel(e.reason, title=f"Malformed summary '{e.key}'")
        raise typer.Exit(1)
    except StoreError as e:
        error(f"Store unavailable: {e}")
        raise typer.Exit(1)

    nl()
    if not rows:
        dim(f"No rows recorded for '{resolved}'")
        nl()
        return

    console.print(render_summary(resolved, rows, limit=limit))

    if resolved is Dimension.RESPONSE_TIMES:
        latencies = [row.response_time_ms for row in rows]
        dim(f"{len(latencies)} requests · avg {fmean(latencies):.2f} ms")
    else:
        total = sum(row.count for row in rows if isinstance(row, TotalRow))
        dim(f"{len(rows)} rows · {total} requests")
    nl()
