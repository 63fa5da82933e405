"""
Main Lysis CLI application.

Provides the entry point for the lysis command-line interface with
subcommands for running the agents and managing keys.
"""

from __future__ import annotations

import sys
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from lysis.cli.commands import keys, run

# =============================================================================
# CLI Application Setup
# =============================================================================

app = typer.Typer(
    name="lysis",
    help="Lysis CLI - Rate-limit aware multi-agent orchestration",
    add_completion=False,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

console = Console()
error_console = Console(stderr=True)

app.add_typer(keys.app, name="keys")
app.command()(run.run)


# =============================================================================
# Version and Info Commands
# =============================================================================


def _get_version() -> str:
    from lysis import __version__

    return __version__


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]Lysis[/bold blue] version [green]{_get_version()}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Lysis - a manager agent and two coding workers on one rate-limited API.

    Examples:
        lysis keys set --agent "k1,k2" --worker1 k3 --worker2 k4
        lysis run "Build a todo app" --workspace ./todo
        lysis info
    """
    pass


@app.command()
def info() -> None:
    """Display system and configuration information."""
    import platform

    from lysis.core.config import LysisConfig
    from lysis.keys.pool import KeyPool
    from lysis.keys.store import JsonFileStore

    table = Table(title="Lysis System Info", show_header=False, box=None)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", _get_version())
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", platform.platform())

    try:
        config = LysisConfig.from_env()
        table.add_row("Model", config.model.name)
        table.add_row("Workspace", config.workspace.root)
        table.add_row("Mock Mode", "Yes" if config.workspace.mock_mode else "No")
        table.add_row("Min Delay", f"{config.scheduler.min_delay}s")
        table.add_row("Max Retries", str(config.retry.max_retries))
        table.add_row("Key Store", config.workspace.key_store_path)
        pool = KeyPool(JsonFileStore(config.workspace.key_store_path))
        keys_ok = pool.has_all_keys()
        table.add_row("All Keys Set", "[green]Yes[/green]" if keys_ok else "[yellow]No[/yellow]")
    except Exception as e:
        table.add_row("Config Loaded", f"[red]No[/red] ({str(e)[:50]})")

    console.print()
    console.print(table)
    console.print()


def cli() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    cli()


__all__ = ["app", "cli", "main"]
