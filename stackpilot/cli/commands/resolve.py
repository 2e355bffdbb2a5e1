"""``stackpilot resolve``: show which environment a trigger maps to.

Reads only the local per-environment configuration; makes no cloud calls.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.panel import Panel

from stackpilot.cli.commands.common import build_trigger, console
from stackpilot.config import config
from stackpilot.core.naming import state_key
from stackpilot.core.resolver import resolve_environment


def resolve_cmd(
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch (or refs/heads/ ref) that was pushed."
    ),
    environment: Optional[str] = typer.Option(
        None, "--environment", "-e", help="Environment chosen manually."
    ),
    reset_credential: bool = typer.Option(False, "--reset-credential"),
    ingress_allowlist: Optional[str] = typer.Option(None, "--ingress-allowlist"),
    no_wait: bool = typer.Option(False, "--no-wait"),
) -> None:
    """Resolve a trigger into its environment descriptor."""
    trigger = build_trigger(
        branch,
        environment,
        reset_credential=reset_credential,
        ingress_allowlist=ingress_allowlist,
        no_wait=no_wait,
    )
    descriptor, advisories = resolve_environment(trigger, config.environments_path)
    flags = descriptor.flags

    lines = [
        f"[bold]Environment:[/bold]        {descriptor.name}",
        f"[bold]Project:[/bold]            {descriptor.project_id or '[dim]<unset>[/dim]'}",
        f"[bold]Region:[/bold]             {descriptor.region or '[dim]<unset>[/dim]'}",
        f"[bold]Reset credential:[/bold]   {flags.reset_credential}",
        f"[bold]Wait for readiness:[/bold] {flags.wait_for_readiness}",
        f"[bold]Lifecycle rules:[/bold]    {flags.lifecycle_rules_enabled}",
        f"[bold]Ingress allowlist:[/bold]  {flags.ingress_allowlist}",
    ]
    if descriptor.project_id:
        lines.append(f"[bold]State key:[/bold]          {state_key(descriptor)}")
    for advisory in advisories:
        lines.extend(["", f"[yellow]{advisory.message}[/yellow]"])

    console.print(
        Panel(
            "\n".join(lines),
            title=f"[bold]{trigger.kind.value} trigger[/bold]",
            border_style="cyan",
            padding=(1, 2),
        )
    )
