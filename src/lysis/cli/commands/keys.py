"""
Keys command for the Lysis CLI.

Manages the per-role comma-separated key lists in the key store.
"""

from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from lysis.core.config import LysisConfig
from lysis.keys.pool import KeyPool, parse_keys
from lysis.keys.store import JsonFileStore

app = typer.Typer(help="Manage API keys per role")
console = Console()
error_console = Console(stderr=True)


def _open_pool(config: LysisConfig) -> tuple[KeyPool, JsonFileStore]:
    config.logging.apply()
    store = JsonFileStore(config.workspace.key_store_path)
    return KeyPool(store, fallback_keys=parse_keys(config.keys.fallback)), store


@app.command("set")
def set_keys(
    agent: Annotated[
        Optional[str],
        typer.Option("--agent", help="Comma-separated keys for the manager agent"),
    ] = None,
    worker1: Annotated[
        Optional[str],
        typer.Option("--worker1", help="Comma-separated keys for worker1 (frontend)"),
    ] = None,
    worker2: Annotated[
        Optional[str],
        typer.Option("--worker2", help="Comma-separated keys for worker2 (backend)"),
    ] = None,
) -> None:
    """
    Save key lists. Rotation cursors reset to the first key.

    Examples:
        lysis keys set --agent "k1,k2" --worker1 k3 --worker2 k4
    """
    if agent is None and worker1 is None and worker2 is None:
        error_console.print("[red]Error:[/red] Pass at least one of --agent, --worker1, --worker2")
        raise typer.Exit(code=1)

    pool, store = _open_pool(LysisConfig.from_env())
    pool.save_keys(agent=agent, worker1=worker1, worker2=worker2)
    console.print(f"[green]Keys saved to[/green] {store.path}")
    if not pool.has_all_keys():
        console.print("[yellow]Some roles still have no keys.[/yellow]")


@app.command("show")
def show_keys() -> None:
    """Show configured keys per role (masked)."""
    pool, store = _open_pool(LysisConfig.from_env())

    table = Table(title="API Keys", show_header=True, header_style="bold cyan")
    table.add_column("Role", style="cyan")
    table.add_column("Keys", justify="right")
    table.add_column("Active")
    table.add_column("Cursor", justify="right")

    for row in pool.describe():
        table.add_row(row["role"], str(row["configured"]), row["active"], str(row["cursor"]))

    console.print()
    console.print(table)
    console.print(f"[dim]Store: {store.path}[/dim]")


__all__ = ["app"]
