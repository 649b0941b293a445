"""Tally CLI."""

import typer

from tally.cli._console import console
from tally.cli.reset import reset
from tally.cli.show import show

app = typer.Typer(
    name="tally",
    help="Inspect request metrics summaries stored in Redis.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        from tally import __version__

        console.print(f"[bold]tally[/bold] [dim]{__version__}[/dim]")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version",
    ),
) -> None:
    """Request metrics rollups for Python web apps."""


# Register commands
app.command()(show)
app.command()(reset)
