"""
Run command for the Lysis CLI.

Sends one message to the manager, streams its reply, prints worker
progress and, when a role runs out of credentials, prompts for an
emergency key and resumes.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from lysis.core.config import LysisConfig
from lysis.core.events import Event, EventType
from lysis.core.types import LoopOutcome, Severity, WorkerLog

console = Console()
error_console = Console(stderr=True)

SEVERITY_STYLES = {
    Severity.INFO: "dim",
    Severity.SUCCESS: "green",
    Severity.ERROR: "red",
    Severity.COMMAND: "blue",
}


def _print_progress(role: str, entry: WorkerLog) -> None:
    style = SEVERITY_STYLES.get(entry.type, "white")
    console.print(f"[magenta][{role}][/magenta] [{style}]{entry.message}[/{style}]")


def _print_outcome(outcome: LoopOutcome) -> None:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", outcome.status.value)
    table.add_row("Loops", str(outcome.loop_count))
    table.add_row("Model calls", str(outcome.model_calls))
    table.add_row("Tool calls", str(len(outcome.tool_results)))
    table.add_row("Time", f"{outcome.execution_time:.2f}s")
    console.print()
    console.print(table)


async def _run_async(message: str, config: LysisConfig, wait: bool) -> None:
    from lysis.core.orchestrator import Lysis

    async with Lysis(config) as app:
        if not app.pool.has_all_keys():
            console.print("[yellow]Not every role has API keys. Run 'lysis keys set' first.[/yellow]")

        app.progress.subscribe(_print_progress)

        def on_failed(event: Event) -> None:
            error_console.print(f"[red]{event.get('role')} failed:[/red] {event.get('message')}")

        def on_exhausted(event: Event) -> None:
            error_console.print(f"[yellow]Rate limit exhausted for {event.get('role')}.[/yellow]")

        def on_timeout(event: Event) -> None:
            error_console.print("[yellow]Agent took too long to respond.[/yellow]")

        app.events.subscribe(EventType.TASK_FAILED, on_failed)
        app.events.subscribe(EventType.RATE_LIMIT_EXHAUSTED, on_exhausted)
        app.events.subscribe(EventType.AGENT_TIMEOUT, on_timeout)

        outcome = await app.handle_user_message(message, on_text=lambda text: console.print(text, end=""))
        console.print()
        if outcome is not None:
            _print_outcome(outcome)

        while True:
            if wait:
                await app.wait_idle()
            if not app.pending_recoveries:
                break
            role = next(iter(app.pending_recoveries))
            key = await asyncio.to_thread(
                Prompt.ask,
                f"Temporary API key for [bold]{role.value}[/bold] (empty to stop)",
                password=True,
                default="",
                show_default=False,
            )
            if not key.strip():
                break
            result = await app.recover(role, key)
            if isinstance(result, LoopOutcome):
                _print_outcome(result)


def run(
    message: Annotated[
        str,
        typer.Argument(help="Message for the manager agent"),
    ],
    workspace: Annotated[
        Optional[Path],
        typer.Option("--workspace", "-w", help="Project directory"),
    ] = None,
    mock: Annotated[
        bool,
        typer.Option("--mock", help="Virtual workspace, shell commands disabled"),
    ] = False,
    no_wait: Annotated[
        bool,
        typer.Option("--no-wait", help="Return without waiting for dispatched workers"),
    ] = False,
) -> None:
    """
    Send a message to the manager and drive the workers.

    Examples:
        lysis run "Build a todo app"
        lysis run "Build a fullstack notes app" --workspace ./notes
        lysis run "Landing page for a bakery" --mock
    """
    config = LysisConfig.from_env()
    config.logging.apply()
    if workspace is not None:
        config.workspace.root = str(workspace)
    if mock:
        config.workspace.mock_mode = True

    try:
        asyncio.run(_run_async(message, config, wait=not no_wait))
    except Exception as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


__all__ = ["run"]
