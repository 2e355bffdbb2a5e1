"""Stage 6: Post-Apply Initialize (best-effort).

Readiness wait, credential propagation after a rotation, code re-push for
units whose code plan/apply ignores, and schema initialization. Misses
degrade the run; they never fail it.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.builder import load_manifest
from stackpilot.core.initializer import STEP_PROPAGATE, STEP_READINESS, PostApplyInitializer
from stackpilot.core.naming import ResourceKind, resource_name
from stackpilot.core.stack import (
    CREDENTIAL_ENV_KEY,
    CREDENTIAL_UNITS,
    SCHEMA_INIT_UNIT,
    UNMANAGED_UNITS,
)
from stackpilot.models.artifacts import CredentialReference
from stackpilot.models.outcomes import StepOutcome
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


class InitializeStage(BaseStage):
    """Stage 6: bring the backing store and units into a usable state."""

    @property
    def stage_id(self) -> str:
        return "s6_initialize"

    @property
    def display_name(self) -> str:
        return "Post-Apply Initialize"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor = run_context["descriptor"]
        settings = run_context["settings"]
        services = run_context["services"]
        variables = run_context["change_artifact"].variables
        outputs = run_context["apply_outputs"]

        def function_names(units: tuple[str, ...]) -> dict[str, str]:
            return {u: resource_name(descriptor, ResourceKind.FUNCTION, u) for u in units}

        initializer = PostApplyInitializer(
            services.compute,
            services.backing_store,
            readiness_attempts=settings.readiness_max_attempts,
            readiness_delay=settings.readiness_delay_seconds,
            init_attempts=settings.init_max_attempts,
            init_delay=settings.init_delay_seconds,
            sleep=run_context["sleep"],
        )
        outcomes: list[StepOutcome] = []

        if descriptor.flags.wait_for_readiness:
            outcomes.append(initializer.wait_for_readiness(variables["database_identifier"]))
        else:
            logger.info("Readiness wait disabled for this run")
            outcomes.append(StepOutcome.success(STEP_READINESS, "skipped by request"))

        credential = CredentialReference(
            secret_identifier=outputs.credential_secret_id,
            rotated=bool(variables.get("credential_rotated")),
        )
        if credential.rotated and not credential.secret_identifier:
            outcomes.append(
                StepOutcome.degraded(STEP_PROPAGATE, "credential rotated but secret identifier unknown")
            )
        else:
            outcomes.extend(
                initializer.propagate_credential(
                    credential, CREDENTIAL_ENV_KEY, function_names(CREDENTIAL_UNITS)
                )
            )

        outcomes.extend(
            initializer.repush_code(
                load_manifest(run_context["artifact_store"]),
                resource_name(descriptor, ResourceKind.CODE_BUCKET),
                function_names(UNMANAGED_UNITS),
            )
        )
        outcomes.append(
            initializer.initialize_schema(
                resource_name(descriptor, ResourceKind.FUNCTION, SCHEMA_INIT_UNIT)
            )
        )

        return {
            "readiness": initializer.readiness_state.value,
            "credential_rotated": credential.rotated,
            "outcomes": outcomes,
        }
