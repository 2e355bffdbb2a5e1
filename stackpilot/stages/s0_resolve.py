"""Stage 0: Resolve Environment.

Turns the run's trigger into the frozen ``EnvironmentDescriptor`` every
later stage reads. Never fails: a missing per-environment configuration
source only produces an advisory outcome.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.resolver import resolve_environment
from stackpilot.models.environment import Trigger
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ResolveStage(BaseStage):
    """Stage 0: trigger -> environment descriptor."""

    @property
    def stage_id(self) -> str:
        return "s0_resolve"

    @property
    def display_name(self) -> str:
        return "Resolve Environment"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        trigger: Trigger = run_context["trigger"]
        settings = run_context["settings"]

        descriptor, outcomes = resolve_environment(trigger, settings.environments_path)
        run_context["descriptor"] = descriptor

        return {
            "environment": descriptor.name,
            "project_id": descriptor.project_id,
            "region": descriptor.region,
            "flags": descriptor.flags.model_dump(),
            "outcomes": outcomes,
        }
