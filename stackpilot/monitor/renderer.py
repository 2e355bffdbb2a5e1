"""Rich terminal renderer for deployment runs.

Turns ``RunSnapshot``, ``RunReport`` and ``ChangeArtifact`` values into
Rich renderables.

Color scheme
------------
- green     : PASSED
- yellow    : DEGRADED, RUNNING
- red       : FAILED, BLOCKED
- dim       : NOT_STARTED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stackpilot.models.changes import ChangeAction, ChangeArtifact
from stackpilot.models.outcomes import RunReport, RunStatus, Severity
from stackpilot.models.stages import StageState
from stackpilot.monitor.projection import RunSnapshot

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.DEGRADED: "bold yellow",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.BLOCKED: "bold red",
}

_STATE_ICONS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.DEGRADED: "[yellow]DEGRADED[/yellow]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
}

_STATUS_BORDERS: dict[RunStatus, str] = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.DEGRADED: "yellow",
    RunStatus.FAILED: "red",
}

_SEVERITY_STYLES: dict[Severity, str] = {
    Severity.OK: "green",
    Severity.ADVISORY: "cyan",
    Severity.DEGRADED: "yellow",
    Severity.FATAL: "bold red",
}

_ACTION_STYLES: dict[ChangeAction, str] = {
    ChangeAction.CREATE: "green",
    ChangeAction.UPDATE: "yellow",
    ChangeAction.DELETE: "red",
}


class RunRenderer:
    """Renders deployment runs as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Ledger snapshots
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        """Render a RunSnapshot as a Panel containing a stage table."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=25)
        table.add_column("State", min_width=14, justify="center")
        table.add_column("Details", min_width=20)
        table.add_column("Artifacts", justify="right", width=10)

        for stage in snapshot.stages:
            name_style = _STATE_STYLES.get(stage.state, "")
            details_parts: list[str] = []
            if stage.detail:
                details_parts.append(escape(stage.detail))
            if stage.entered_at:
                details_parts.append(f"[dim]{stage.entered_at.strftime('%H:%M:%S')}[/dim]")
            table.add_row(
                f"[{name_style}]{stage.display_name}[/{name_style}]",
                _STATE_ICONS.get(stage.state, stage.state.value),
                " | ".join(details_parts) if details_parts else "[dim]-[/dim]",
                str(len(stage.artifact_refs)),
            )

        chain_status = (
            "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        )
        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {snapshot.run_id}",
                f"[bold]Environment:[/bold] {snapshot.environment or '-'}",
                f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
                f"[bold]Chain:[/bold] {chain_status}",
            ]
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]stackpilot run[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Run reports
    # ------------------------------------------------------------------

    def render_report(self, report: RunReport) -> Panel:
        """Render the outcome of a run: status, every step and the outputs."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Step", min_width=20)
        table.add_column("Result", justify="center", width=10)
        table.add_column("Message", min_width=30)

        for outcome in report.outcomes:
            style = _SEVERITY_STYLES.get(outcome.severity, "")
            table.add_row(
                outcome.step,
                f"[{style}]{outcome.severity.value.upper()}[/{style}]",
                escape(outcome.message) if outcome.message else "[dim]-[/dim]",
            )

        parts: list[object] = [table]
        if report.fatal_error:
            parts.append(Text(""))
            parts.append(
                Text.from_markup(
                    f"[bold red]Aborted in {report.fatal_stage}:[/bold red] "
                    f"{escape(report.fatal_error)}"
                )
            )
        if report.outputs:
            outputs = Table(show_header=False, box=None, padding=(0, 2))
            outputs.add_column("Output", style="bold")
            outputs.add_column("Value")
            for name, value in sorted(report.outputs.items()):
                outputs.add_row(name, escape(value))
            parts.extend([Text(""), outputs])

        return Panel(
            Group(*parts),
            title=f"[bold]{report.environment or 'run'}: {report.status.value}[/bold]",
            subtitle=report.run_id,
            border_style=_STATUS_BORDERS[report.status],
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def render_plan(self, artifact: ChangeArtifact) -> Panel:
        """Render the changes a stored plan would make."""
        if artifact.is_noop:
            body: object = Text.from_markup("[green]No changes. Infrastructure is up to date.[/green]")
        else:
            body = Table(show_header=True, header_style="bold cyan", expand=True)
            body.add_column("Action", width=8)
            body.add_column("Resource", min_width=20)
            body.add_column("Type", min_width=25)
            for change in artifact.changes:
                style = _ACTION_STYLES[change.action]
                body.add_row(
                    f"[{style}]{change.action.value}[/{style}]",
                    change.resource_key,
                    change.type_name,
                )
        summary = artifact.summary()
        return Panel(
            body,
            title=f"[bold]Plan for {artifact.environment}[/bold]",
            subtitle=(
                f"{summary['create']} to create, {summary['update']} to update, "
                f"{summary['delete']} to delete"
            ),
            border_style="cyan",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_report(self, report: RunReport) -> None:
        self.console.print(self.render_report(report))

    def print_plan(self, artifact: ChangeArtifact) -> None:
        self.console.print(self.render_plan(artifact))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
