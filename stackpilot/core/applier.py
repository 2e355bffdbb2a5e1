"""Apply a stored ChangeArtifact exactly as planned.

Apply holds the state lock for its whole duration, refuses an artifact
whose state lineage or serial no longer matches, and persists state after
every single change so a crash leaves state describing exactly what was
done. References are resolved here, against the attributes recorded for
resources applied earlier in dependency order.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from stackpilot.cloud.base import (
    ResourceDriver,
    ResourceNotFoundError,
    ResourceOperationError,
)
from stackpilot.core.planner import DATABASE_MODE_VARIABLE
from stackpilot.core.stack import (
    CREDENTIAL_SECRET_OUTPUT,
    ENTRY_POINT_OUTPUT,
    IDENTITY_CLIENT_OUTPUT,
)
from stackpilot.core.state_backend import StateBackend
from stackpilot.models.changes import (
    ApplyOutputs,
    ChangeAction,
    ChangeArtifact,
    ResourceChange,
)
from stackpilot.models.outcomes import FatalStepError
from stackpilot.models.resources import JSON_MARKER, REF_MARKER, OutputSpec
from stackpilot.models.state import ManagedResourceRecord, ResourceMode, StackState

logger = logging.getLogger(__name__)


class StaleArtifactError(FatalStepError):
    """The state moved on since the artifact was planned; plan again."""


class ApplyError(FatalStepError):
    """A change could not be applied."""


class UnresolvedReferenceError(ApplyError):
    """A reference names a resource or attribute that state does not hold."""


def _attribute(record: ManagedResourceRecord, path: str) -> Any:
    value: Any = record.attributes
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            raise UnresolvedReferenceError(
                f"{record.resource_key} has no attribute {path}"
            )
        value = value[part]
    return value


def resolve_references(value: Any, state: StackState) -> Any:
    """Replace every reference marker in *value* with its concrete value."""
    if isinstance(value, dict):
        if set(value) == {REF_MARKER}:
            target = value[REF_MARKER]
            record = state.get(target["key"])
            if record is None:
                raise UnresolvedReferenceError(f"{target['key']} is not in state")
            return _attribute(record, target["attribute"])
        if set(value) == {JSON_MARKER}:
            return json.dumps(resolve_references(value[JSON_MARKER], state), sort_keys=True)
        return {k: resolve_references(v, state) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_references(item, state) for item in value]
    return value


def collect_outputs(state: StackState, outputs: list[OutputSpec]) -> dict[str, str]:
    values: dict[str, str] = {}
    for output in outputs:
        record = state.get(output.resource_key)
        try:
            if record is None:
                raise UnresolvedReferenceError(f"{output.resource_key} is not in state")
            values[output.name] = str(_attribute(record, output.attribute))
        except UnresolvedReferenceError as exc:
            logger.warning("Output %s unavailable: %s", output.name, exc)
            values[output.name] = ""
    return values


def write_outputs_file(outputs: ApplyOutputs, path: Path) -> Path:
    """Write the flat KEY=value file consumed by the UI build."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(outputs.as_env_lines()) + "\n", encoding="utf-8")
    logger.info("Wrote outputs to %s", path)
    return path


class Applier:
    """Executes a ChangeArtifact through a resource driver.

    Parameters
    ----------
    driver:
        Resource driver performing the mutations.
    backend:
        State backend; locked for the duration of ``apply``.
    """

    def __init__(self, driver: ResourceDriver, backend: StateBackend, *, run_id: str = "") -> None:
        self._driver = driver
        self._backend = backend
        self._run_id = run_id

    def apply(self, artifact: ChangeArtifact) -> ApplyOutputs:
        with self._backend.lock("apply", self._run_id):
            state = self._backend.read_state()
            if (state.lineage, state.serial) != (artifact.state_lineage, artifact.state_serial):
                raise StaleArtifactError(
                    f"plan was computed against state {artifact.state_lineage or '<none>'}"
                    f"@{artifact.state_serial} but state is now "
                    f"{state.lineage or '<none>'}@{state.serial}; plan again"
                )
            state = state.initialized()

            for index, change in enumerate(artifact.changes, start=1):
                logger.info(
                    "[%d/%d] %s %s (%s)",
                    index,
                    len(artifact.changes),
                    change.action.value,
                    change.resource_key,
                    change.type_name,
                )
                state = self._apply_change(state, change)
                self._backend.write_state(state)

            mode = artifact.variables.get(DATABASE_MODE_VARIABLE)
            if mode and state.metadata.get(DATABASE_MODE_VARIABLE) != mode:
                state = state.with_metadata(**{DATABASE_MODE_VARIABLE: mode})
                self._backend.write_state(state)

        values = collect_outputs(state, artifact.outputs)
        return ApplyOutputs(
            entry_point_address=values.get(ENTRY_POINT_OUTPUT, ""),
            identity_client_id=values.get(IDENTITY_CLIENT_OUTPUT, ""),
            credential_secret_id=values.get(CREDENTIAL_SECRET_OUTPUT, ""),
            values=values,
            changes_applied=len(artifact.changes),
            state_serial=state.serial,
        )

    def _apply_change(self, state: StackState, change: ResourceChange) -> StackState:
        try:
            if change.action == ChangeAction.DELETE:
                return self._delete(state, change)

            after = change.after or {}
            resolved_after = resolve_references(after, state)
            if change.action == ChangeAction.CREATE:
                snapshot = self._driver.create(change.type_name, change.identifier, resolved_after)
                mode = ResourceMode.CREATED
            else:
                record = state.get(change.resource_key)
                if record is None:
                    raise ApplyError(f"{change.resource_key} is not in state, cannot update")
                resolved_before = resolve_references(change.before or {}, state)
                snapshot = self._driver.update(
                    change.type_name, record.external_identifier, resolved_before, resolved_after
                )
                mode = record.mode
        except (ResourceOperationError, ResourceNotFoundError) as exc:
            raise ApplyError(f"{change.action.value} {change.resource_key} failed: {exc}") from exc

        return state.with_record(
            ManagedResourceRecord(
                resource_key=change.resource_key,
                mode=mode,
                external_identifier=snapshot.external_identifier,
                type_name=change.type_name,
                properties=after,
                attributes=snapshot.attributes,
                depends_on=change.depends_on,
            )
        )

    def _delete(self, state: StackState, change: ResourceChange) -> StackState:
        try:
            self._driver.delete(change.type_name, change.identifier)
        except ResourceNotFoundError:
            logger.info("%s was already gone", change.resource_key)
        return state.without(change.resource_key)
