"""Change planning: desired stack vs. managed state -> ChangeArtifact.

``plan`` is pure. It reads nothing but its arguments and mutates nothing;
the same state, desired stack and variables always give the same change
list, and a state produced by applying a plan gives an empty one.

Creates and updates are ordered so every resource comes after what it
references; deletes come last, dependents first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from stackpilot.core.artifact_store import ContentAddressedStore
from stackpilot.core.hasher import compute_config_hash
from stackpilot.models.changes import ChangeAction, ChangeArtifact, ResourceChange
from stackpilot.models.outcomes import FatalStepError
from stackpilot.models.resources import DesiredStack, ResourceSpec
from stackpilot.models.state import StackState

logger = logging.getLogger(__name__)

DATABASE_MODE_VARIABLE = "database_mode"


class PlanError(FatalStepError):
    """The desired stack cannot be planned (bad references, cycles, replacements)."""


class ModeSwitchError(PlanError):
    """The database mode differs from the applied one and no switch was allowed."""


def dependency_order(nodes: Mapping[str, Iterable[str]]) -> list[str]:
    """Topological order of *nodes* (key -> keys it depends on).

    Ties are broken alphabetically so the order is deterministic. Raises
    ``PlanError`` on a cycle.
    """
    remaining = {key: set(deps) & set(nodes) for key, deps in nodes.items()}
    ordered: list[str] = []
    while remaining:
        ready = sorted(key for key, deps in remaining.items() if not deps)
        if not ready:
            raise PlanError(f"dependency cycle among: {', '.join(sorted(remaining))}")
        for key in ready:
            ordered.append(key)
            del remaining[key]
        for deps in remaining.values():
            deps.difference_update(ready)
    return ordered


def _comparable(properties: dict[str, Any], ignore: Iterable[str]) -> dict[str, Any]:
    ignored = set(ignore)
    return {k: v for k, v in properties.items() if k not in ignored}


def _validate(desired: DesiredStack) -> dict[str, ResourceSpec]:
    specs: dict[str, ResourceSpec] = {}
    for spec in desired.resources:
        if spec.key in specs:
            raise PlanError(f"duplicate resource key {spec.key}")
        specs[spec.key] = spec
    for spec in specs.values():
        unknown = spec.dependencies() - set(specs)
        if unknown:
            raise PlanError(f"{spec.key} references unknown resources: {', '.join(sorted(unknown))}")
    for output in desired.outputs:
        if output.resource_key not in specs:
            raise PlanError(f"output {output.name} references unknown resource {output.resource_key}")
    return specs


def check_mode_switch(
    state: StackState, variables: Mapping[str, Any], *, allow_mode_switch: bool = False
) -> None:
    """Refuse to silently change the database mode an environment was applied with."""
    applied = state.metadata.get(DATABASE_MODE_VARIABLE)
    requested = variables.get(DATABASE_MODE_VARIABLE)
    if not applied or not requested or applied == requested:
        return
    if not allow_mode_switch:
        raise ModeSwitchError(
            f"database mode would switch from {applied} to {requested}; "
            "re-run with --allow-mode-switch to confirm"
        )
    logger.warning("Database mode switching from %s to %s (explicitly allowed)", applied, requested)


def plan(
    state: StackState,
    desired: DesiredStack,
    variables: dict[str, Any],
    *,
    environment: str,
    project_id: str,
    allow_mode_switch: bool = False,
) -> ChangeArtifact:
    """Compute the changes that take *state* to *desired*."""
    check_mode_switch(state, variables, allow_mode_switch=allow_mode_switch)
    specs = _validate(desired)

    changes: list[ResourceChange] = []
    for key in dependency_order({k: s.dependencies() for k, s in specs.items()}):
        spec = specs[key]
        record = state.get(key)
        depends_on = sorted(spec.dependencies())
        if record is None:
            changes.append(
                ResourceChange(
                    resource_key=key,
                    action=ChangeAction.CREATE,
                    type_name=spec.type_name,
                    identifier=spec.identifier,
                    after=spec.properties,
                    depends_on=depends_on,
                )
            )
            continue
        if record.type_name and record.type_name != spec.type_name:
            raise PlanError(
                f"{key} changes type from {record.type_name} to {spec.type_name}; "
                "replacement is not supported"
            )
        if _comparable(record.properties, spec.ignore_changes) != _comparable(
            spec.properties, spec.ignore_changes
        ):
            changes.append(
                ResourceChange(
                    resource_key=key,
                    action=ChangeAction.UPDATE,
                    type_name=spec.type_name,
                    identifier=record.external_identifier,
                    before=record.properties,
                    after=spec.properties,
                    depends_on=depends_on,
                )
            )

    orphans = {k: r.depends_on for k, r in state.resources.items() if k not in specs}
    for key in reversed(dependency_order(orphans)):
        record = state.resources[key]
        changes.append(
            ResourceChange(
                resource_key=key,
                action=ChangeAction.DELETE,
                type_name=record.type_name,
                identifier=record.external_identifier,
                before=record.properties,
                depends_on=list(record.depends_on),
            )
        )

    artifact = ChangeArtifact(
        environment=environment,
        project_id=project_id,
        state_lineage=state.lineage,
        state_serial=state.serial,
        config_hash=compute_config_hash(desired.model_dump(mode="json"), variables),
        variables=variables,
        changes=changes,
        outputs=desired.outputs,
    )
    summary = artifact.summary()
    logger.info(
        "Plan for %s: %d to create, %d to update, %d to delete",
        environment,
        summary["create"],
        summary["update"],
        summary["delete"],
    )
    return artifact


def plan_artifact_name(environment: str) -> str:
    return f"plan/{environment}"


def store_plan(store: ContentAddressedStore, artifact: ChangeArtifact) -> str:
    """Persist *artifact* and point ``plan/<env>`` at it. Returns its address."""
    stored = store.store(
        artifact.model_dump_json().encode("utf-8"),
        name=plan_artifact_name(artifact.environment),
        artifact_type="plan",
        metadata={"config_hash": artifact.config_hash},
    )
    return stored.content_address


def load_plan(store: ContentAddressedStore, environment: str) -> ChangeArtifact:
    """Load the latest plan stored for *environment*.

    Raises ``PlanError`` when no plan has been produced yet.
    """
    try:
        data = store.retrieve_named(plan_artifact_name(environment))
    except FileNotFoundError as exc:
        raise PlanError(f"no plan stored for environment {environment}; run plan first") from exc
    return ChangeArtifact.model_validate_json(data)
