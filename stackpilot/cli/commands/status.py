"""``stackpilot status [RUN_ID]``: show a run as recorded in the ledger.

Defaults to the most recent run, optionally within one environment. The
view is replayed from the ledger on every call; nothing else is consulted.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from stackpilot.cli.commands.common import console
from stackpilot.config import config
from stackpilot.core.run_ledger import LedgerIntegrityError, RunLedger
from stackpilot.monitor.projection import RunProjection
from stackpilot.monitor.renderer import RunRenderer


def status_cmd(
    run_id: Optional[str] = typer.Argument(
        None,
        help="Run to show. Defaults to the most recent run.",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the ledger hash chain before displaying.",
    ),
    environment: Optional[str] = typer.Option(
        None,
        "--environment",
        "-e",
        help="Show the most recent run for this environment.",
    ),
    ledger_db: Optional[Path] = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Show the stage states of a deployment run."""
    db_path = ledger_db or config.ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    all_runs = ledger.get_all_run_ids(environment=environment)
    if run_id is None:
        if not all_runs:
            scope = f" for {environment}" if environment else ""
            console.print(f"[dim]No runs recorded{scope} yet.[/dim]")
            raise typer.Exit(code=1)
        run_id = all_runs[0]
    elif run_id not in all_runs:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        if all_runs:
            console.print("\n[bold]Recent runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
        raise typer.Exit(code=1)

    renderer = RunRenderer(console=console)
    if verify_chain:
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        console.print()

    renderer.print_snapshot(RunProjection(ledger).snapshot(run_id))
