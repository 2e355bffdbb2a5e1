"""Main Typer application: registers every CLI command.

Entry point: ``stackpilot`` (configured in pyproject.toml).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from stackpilot.cli.commands.apply import apply_cmd
from stackpilot.cli.commands.bootstrap import bootstrap_cmd
from stackpilot.cli.commands.deploy import deploy_cmd
from stackpilot.cli.commands.plan import plan_cmd
from stackpilot.cli.commands.resolve import resolve_cmd
from stackpilot.cli.commands.status import status_cmd
from stackpilot.config import config

app = typer.Typer(
    name="stackpilot",
    help="stackpilot: per-environment deployment of the document-query stack.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="resolve", help="Show the environment a trigger resolves to.")(resolve_cmd)
app.command(name="bootstrap", help="Create the remote state backend.")(bootstrap_cmd)
app.command(name="plan", help="Compute and store the change plan.")(plan_cmd)
app.command(name="apply", help="Apply the stored plan, then initialize and verify.")(apply_cmd)
app.command(name="deploy", help="Run the full pipeline for one trigger.")(deploy_cmd)
app.command(name="status", help="Show a run recorded in the ledger.")(status_cmd)


def configure_logging(level: str) -> None:
    """Route log records through Rich, once per process."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(show_path=False, rich_tracebacks=True))
    # botocore is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        config.log_level,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    configure_logging(log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
