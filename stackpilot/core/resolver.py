"""Environment resolution: trigger -> EnvironmentDescriptor.

Branch-to-environment mapping is a fixed total function with a ``dev``
fallback, so resolution never fails. Manual triggers always win over
branch-derived defaults.

Per-environment values come from ``<environments_path>/<env>/stack.toml``::

    project_id = "ragbot"
    region = "eu-west-1"
    use_existing_database = false
    lambda_role_arn = "arn:aws:iam::123456789012:role/ragbot-dev-lambda"

A missing file is advisory: fields stay empty and the first consumer that
needs them (the backend bootstrapper) rejects the run.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from stackpilot.models.environment import (
    EnvironmentDescriptor,
    EnvironmentFlags,
    Trigger,
    TriggerKind,
)
from stackpilot.models.outcomes import StepOutcome

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "dev"
KNOWN_ENVIRONMENTS: tuple[str, ...] = ("dev", "staging", "prod")
DEFAULT_INGRESS_ALLOWLIST = "0.0.0.0/0"

BRANCH_ENVIRONMENTS: dict[str, str] = {
    "main": "prod",
    "staging": "staging",
    "develop": "dev",
}

CONFIG_FILENAME = "stack.toml"


def branch_name(ref: str) -> str:
    """Strip a ``refs/heads/`` prefix; anything else is taken verbatim."""
    return ref.removeprefix("refs/heads/")


def environment_for_branch(branch: str) -> str:
    return BRANCH_ENVIRONMENTS.get(branch_name(branch), DEFAULT_ENVIRONMENT)


def environment_name(trigger: Trigger) -> str:
    """Pick the environment name for *trigger*."""
    if trigger.kind == TriggerKind.MANUAL and trigger.environment:
        return trigger.environment
    return environment_for_branch(trigger.branch)


def derive_flags(trigger: Trigger, environment: str) -> EnvironmentFlags:
    """Compute run flags; only a manual trigger may override the defaults."""
    manual = trigger.kind == TriggerKind.MANUAL

    reset_credential = manual and bool(trigger.reset_credential)
    wait_for_readiness = not (manual and trigger.wait_for_readiness is False)

    ingress = DEFAULT_INGRESS_ALLOWLIST
    if manual and trigger.ingress_allowlist:
        ingress = trigger.ingress_allowlist.strip()

    return EnvironmentFlags(
        reset_credential=reset_credential,
        wait_for_readiness=wait_for_readiness,
        lifecycle_rules_enabled=environment == "prod",
        ingress_allowlist=ingress,
    )


def load_environment_settings(
    environments_path: Path, environment: str
) -> tuple[dict[str, Any], StepOutcome | None]:
    """Read the per-environment configuration source.

    Returns the parsed key/values and, when the source is missing or
    unreadable, an advisory outcome describing why.
    """
    path = Path(environments_path) / environment / CONFIG_FILENAME
    if not path.exists():
        logger.warning("No configuration found for environment %s at %s", environment, path)
        return {}, StepOutcome.advisory(
            "resolve",
            f"configuration source not found for environment {environment}",
            path=str(path),
        )
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh), None
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}, StepOutcome.advisory(
            "resolve", f"configuration source unreadable: {exc}", path=str(path)
        )


def build_descriptor(
    trigger: Trigger, settings: dict[str, Any]
) -> EnvironmentDescriptor:
    """Pure part of resolution: trigger + settings -> descriptor."""
    name = environment_name(trigger)
    extra = {k: v for k, v in settings.items() if k not in ("project_id", "region")}
    return EnvironmentDescriptor(
        name=name,
        project_id=str(settings.get("project_id", "")).strip(),
        region=str(settings.get("region", "")).strip(),
        flags=derive_flags(trigger, name),
        settings=extra,
    )


def resolve_environment(
    trigger: Trigger, environments_path: Path
) -> tuple[EnvironmentDescriptor, list[StepOutcome]]:
    """Resolve *trigger* into a descriptor plus any advisory outcomes."""
    name = environment_name(trigger)
    if name not in KNOWN_ENVIRONMENTS:
        logger.warning("Environment %s is not one of %s", name, ", ".join(KNOWN_ENVIRONMENTS))

    settings, advisory = load_environment_settings(environments_path, name)
    descriptor = build_descriptor(trigger, settings)
    logger.info(
        "Resolved %s trigger to environment %s (project=%s region=%s)",
        trigger.kind.value,
        descriptor.name,
        descriptor.project_id or "<unset>",
        descriptor.region or "<unset>",
    )
    return descriptor, [advisory] if advisory else []
