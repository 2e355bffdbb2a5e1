"""Helpers shared by the run commands (deploy, plan, apply, bootstrap)."""

from __future__ import annotations

import typer
from rich.console import Console

from stackpilot.config import config
from stackpilot.core.orchestrator import DeploymentOrchestrator
from stackpilot.models.environment import Trigger
from stackpilot.models.outcomes import RunReport
from stackpilot.monitor.renderer import RunRenderer

console = Console()


def build_trigger(
    branch: str | None,
    environment: str | None,
    *,
    reset_credential: bool = False,
    ingress_allowlist: str | None = None,
    no_wait: bool = False,
) -> Trigger:
    """Turn command-line options into a trigger.

    ``--environment`` makes the run manual; otherwise the branch decides.
    Overrides only apply to manual runs, so passing one with ``--branch``
    alone is rejected.
    """
    if environment:
        return Trigger.manual(
            environment,
            reset_credential=reset_credential,
            ingress_allowlist=ingress_allowlist,
            wait_for_readiness=not no_wait,
        )
    if not branch:
        console.print("[bold red]Either --branch or --environment is required.[/bold red]")
        raise typer.Exit(code=2)
    if reset_credential or ingress_allowlist or no_wait:
        console.print(
            "[bold red]--reset-credential, --ingress-allowlist and --no-wait "
            "need --environment.[/bold red]"
        )
        raise typer.Exit(code=2)
    return Trigger.push(branch)


def execute_run(
    stage_ids: list[str],
    trigger: Trigger,
    *,
    allow_mode_switch: bool = False,
) -> tuple[DeploymentOrchestrator, RunReport]:
    """Run *stage_ids* for *trigger*, print the report, exit 1 on failure."""
    orchestrator = DeploymentOrchestrator(config, stage_ids=stage_ids)
    report = orchestrator.run(trigger, allow_mode_switch=allow_mode_switch)

    RunRenderer(console=console).print_report(report)
    if not report.succeeded:
        console.print(f"[dim]Inspect the run with: stackpilot status {report.run_id}[/dim]")
        raise typer.Exit(code=1)
    return orchestrator, report
