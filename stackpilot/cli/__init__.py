"""stackpilot CLI, Typer-based.

Provides the ``stackpilot`` command with subcommands to resolve, bootstrap,
plan, apply and deploy an environment, and to inspect recorded runs.

All output uses Rich for formatted terminal display.
"""
