"""``stackpilot apply``: apply the stored plan, then initialize and verify.

Fails when no plan was stored for the environment or when the state has
moved since the plan was computed; re-run ``stackpilot plan`` in both
cases. A credential reset is requested at plan time
(``stackpilot plan --reset-credential``); apply propagates whatever the
stored plan rotated.
"""

from __future__ import annotations

from typing import Optional

import typer

from stackpilot.cli.commands.common import build_trigger, execute_run
from stackpilot.stages import APPLY_STAGES


def apply_cmd(
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Branch (or refs/heads/ ref) that was pushed."
    ),
    environment: Optional[str] = typer.Option(
        None, "--environment", "-e", help="Apply the stored plan of this environment."
    ),
    no_wait: bool = typer.Option(
        False,
        "--no-wait",
        help="Skip waiting for the database to become available (manual runs only).",
    ),
) -> None:
    """Apply the stored plan for an environment."""
    trigger = build_trigger(branch, environment, no_wait=no_wait)
    execute_run(APPLY_STAGES, trigger)
