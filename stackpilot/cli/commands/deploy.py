"""``stackpilot deploy``: the full pipeline for one trigger.

Resolves the environment, ensures the state backend, builds the compute
units, adopts pre-existing resources, plans, applies the stored plan,
then runs the post-apply initializer and the health check.
"""

from __future__ import annotations

from typing import Optional

import typer

from stackpilot.cli.commands.common import build_trigger, execute_run
from stackpilot.stages import STAGE_ORDER


def deploy_cmd(
    branch: Optional[str] = typer.Option(
        None,
        "--branch",
        "-b",
        help="Branch (or refs/heads/ ref) that was pushed.",
    ),
    environment: Optional[str] = typer.Option(
        None,
        "--environment",
        "-e",
        help="Deploy this environment manually instead of deriving it from a branch.",
    ),
    reset_credential: bool = typer.Option(
        False,
        "--reset-credential",
        help="Generate a new database credential (manual runs only).",
    ),
    ingress_allowlist: Optional[str] = typer.Option(
        None,
        "--ingress-allowlist",
        help="CIDR allowed through the bastion security group (manual runs only).",
    ),
    no_wait: bool = typer.Option(
        False,
        "--no-wait",
        help="Skip waiting for the database to become available (manual runs only).",
    ),
    allow_mode_switch: bool = typer.Option(
        False,
        "--allow-mode-switch",
        help="Permit switching between a created and an existing database.",
    ),
) -> None:
    """Run every stage for a push or a manual trigger."""
    trigger = build_trigger(
        branch,
        environment,
        reset_credential=reset_credential,
        ingress_allowlist=ingress_allowlist,
        no_wait=no_wait,
    )
    execute_run(list(STAGE_ORDER), trigger, allow_mode_switch=allow_mode_switch)
