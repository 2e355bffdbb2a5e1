"""Stage 3: Reconcile Resources.

Resolves the database binding (created vs. imported), assembles the
desired stack and runs the import pass. Import misses come back as
degraded outcomes; any error while resolving the binding fails the stage.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.reconciler import ResourceReconciler, resolve_database_binding
from stackpilot.core.stack import build_desired_stack
from stackpilot.models.outcomes import StepOutcome
from stackpilot.models.state import ResourceMode
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ReconcileStage(BaseStage):
    """Stage 3: database binding, desired stack, import pass."""

    @property
    def stage_id(self) -> str:
        return "s3_reconcile"

    @property
    def display_name(self) -> str:
        return "Reconcile Resources"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor = run_context["descriptor"]
        services = run_context["services"]

        binding = resolve_database_binding(descriptor, services.secrets, services.backing_store)
        desired = build_desired_stack(descriptor, binding, run_context["builds"])
        run_context["binding"] = binding
        run_context["desired"] = desired

        reconciler = ResourceReconciler(
            services.driver, run_context["state_backend"], run_id=run_context["run_id"]
        )
        outcomes = reconciler.import_existing(desired)
        imported = [o.context["resource_key"] for o in outcomes if o.ok]

        notes = []
        if binding.mode == ResourceMode.IMPORTED and descriptor.flags.reset_credential:
            notes.append(
                StepOutcome.advisory(
                    "reconcile",
                    "credential reset ignored: the existing database keeps its credential",
                    database=binding.identifier,
                )
            )

        return {
            "database_mode": binding.mode.value,
            "resources": len(desired.resources),
            "imported": imported,
            "outcomes": [
                StepOutcome.success(
                    "reconcile",
                    f"database mode {binding.mode.value}",
                    credential_generated=getattr(binding, "credential_generated", False),
                ),
                *notes,
                *outcomes,
            ],
        }
