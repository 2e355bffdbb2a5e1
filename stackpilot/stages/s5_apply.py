"""Stage 5: Apply.

Loads the stored ``plan/<env>`` artifact (never a freshly computed diff),
applies it under the state lock and writes the outputs file.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.applier import Applier, write_outputs_file
from stackpilot.core.planner import load_plan
from stackpilot.models.outcomes import StepOutcome
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ApplyStage(BaseStage):
    """Stage 5: apply the stored plan."""

    @property
    def stage_id(self) -> str:
        return "s5_apply"

    @property
    def display_name(self) -> str:
        return "Apply"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor = run_context["descriptor"]
        settings = run_context["settings"]
        services = run_context["services"]

        artifact = load_plan(run_context["artifact_store"], descriptor.name)
        applier = Applier(services.driver, run_context["state_backend"], run_id=run_context["run_id"])
        outputs = applier.apply(artifact)
        outputs_path = write_outputs_file(outputs, settings.outputs_file)

        run_context["change_artifact"] = artifact
        run_context["apply_outputs"] = outputs
        return {
            "changes_applied": outputs.changes_applied,
            "state_serial": outputs.state_serial,
            "outputs": outputs.values,
            "outputs_file": str(outputs_path),
            "outcomes": [
                StepOutcome.success(
                    "apply",
                    f"applied {outputs.changes_applied} changes",
                    entry_point_address=outputs.entry_point_address,
                )
            ],
        }
