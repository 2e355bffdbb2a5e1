"""``stackpilot bootstrap``: create the state bucket and lock table only."""

from __future__ import annotations

from typing import Optional

import typer

from stackpilot.cli.commands.common import build_trigger, execute_run

BOOTSTRAP_STAGES = ["s0_resolve", "s1_backend"]


def bootstrap_cmd(
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch (or refs/heads/ ref) that was pushed."
    ),
    environment: Optional[str] = typer.Option(
        None, "--environment", "-e", help="Environment whose backend to create."
    ),
) -> None:
    """Ensure the remote state backend exists for an environment."""
    execute_run(BOOTSTRAP_STAGES, build_trigger(branch, environment))
