"""``stackpilot plan``: compute and store the change set, touch nothing.

The plan is stored as ``plan/<env>`` in the artifact store; a later
``stackpilot apply`` applies exactly that artifact.
"""

from __future__ import annotations

from typing import Optional

import typer

from stackpilot.cli.commands.common import build_trigger, console, execute_run
from stackpilot.core.planner import load_plan
from stackpilot.monitor.renderer import RunRenderer
from stackpilot.stages import PLAN_STAGES


def plan_cmd(
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch (or refs/heads/ ref) that was pushed."
    ),
    environment: Optional[str] = typer.Option(
        None, "--environment", "-e", help="Plan this environment manually."
    ),
    reset_credential: bool = typer.Option(
        False, "--reset-credential", help="Plan a new database credential (manual runs only)."
    ),
    ingress_allowlist: Optional[str] = typer.Option(
        None, "--ingress-allowlist", help="CIDR allowed through the bastion security group."
    ),
    allow_mode_switch: bool = typer.Option(
        False,
        "--allow-mode-switch",
        help="Permit switching between a created and an existing database.",
    ),
) -> None:
    """Plan infrastructure changes without applying them."""
    trigger = build_trigger(
        branch,
        environment,
        reset_credential=reset_credential,
        ingress_allowlist=ingress_allowlist,
    )
    orchestrator, report = execute_run(PLAN_STAGES, trigger, allow_mode_switch=allow_mode_switch)
    artifact = load_plan(orchestrator.artifact_store, report.environment)
    RunRenderer(console=console).print_plan(artifact)
