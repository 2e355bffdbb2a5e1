"""Stage 4: Plan.

Reads current state, computes the change set and stores it in the
artifact store as ``plan/<env>``. Planning mutates no infrastructure.
State is read without the lock unless ``lock_during_plan`` is set; apply
detects a state that moved in between and refuses the plan.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.planner import DATABASE_MODE_VARIABLE, plan, store_plan
from stackpilot.models.database import DatabaseBinding
from stackpilot.models.environment import EnvironmentDescriptor
from stackpilot.models.outcomes import StepOutcome
from stackpilot.models.state import ResourceMode
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


def plan_variables(descriptor: EnvironmentDescriptor, binding: DatabaseBinding) -> dict[str, Any]:
    """Input variables a plan is bound to (besides state and desired stack)."""
    return {
        "environment": descriptor.name,
        "project_id": descriptor.project_id,
        "region": descriptor.region,
        DATABASE_MODE_VARIABLE: binding.mode.value,
        "database_identifier": binding.identifier,
        "credential_rotated": binding.mode == ResourceMode.CREATED
        and descriptor.flags.reset_credential,
    }


class PlanStage(BaseStage):
    """Stage 4: compute and store the change artifact."""

    @property
    def stage_id(self) -> str:
        return "s4_plan"

    @property
    def display_name(self) -> str:
        return "Plan"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor = run_context["descriptor"]
        settings = run_context["settings"]
        backend = run_context["state_backend"]

        if settings.lock_during_plan:
            with backend.lock("plan", run_context["run_id"]):
                state = backend.read_state()
        else:
            state = backend.read_state()

        artifact = plan(
            state,
            run_context["desired"],
            plan_variables(descriptor, run_context["binding"]),
            environment=descriptor.name,
            project_id=descriptor.project_id,
            allow_mode_switch=run_context.get("allow_mode_switch", False),
        )
        address = store_plan(run_context["artifact_store"], artifact)
        run_context["change_artifact"] = artifact

        summary = artifact.summary()
        return {
            "plan_address": address,
            "config_hash": artifact.config_hash,
            "state_serial": artifact.state_serial,
            "summary": summary,
            "artifact_references": [address],
            "outcomes": [
                StepOutcome.success(
                    "plan",
                    "no changes" if artifact.is_noop else f"{len(artifact.changes)} changes",
                    **summary,
                )
            ],
        }
