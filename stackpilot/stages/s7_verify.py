"""Stage 7: Health Check (best-effort)."""

from __future__ import annotations

from typing import Any

from stackpilot.core.health import HealthVerifier
from stackpilot.core.naming import ResourceKind, resource_name
from stackpilot.core.stack import HEALTH_CHECK_UNIT
from stackpilot.stages.base import BaseStage


class VerifyStage(BaseStage):
    """Stage 7: synthetic request against the deployed entry unit."""

    @property
    def stage_id(self) -> str:
        return "s7_verify"

    @property
    def display_name(self) -> str:
        return "Health Check"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor = run_context["descriptor"]
        function_name = resource_name(descriptor, ResourceKind.FUNCTION, HEALTH_CHECK_UNIT)
        outcome = HealthVerifier(run_context["services"].compute).check(function_name)
        return {"function_name": function_name, "healthy": outcome.ok, "outcomes": [outcome]}
