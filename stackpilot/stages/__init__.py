"""Deployment stages: registry mapping stage_id to stage class.

Usage::

    from stackpilot.stages import STAGE_REGISTRY, get_stage

    stage = get_stage("s4_plan")
    result = stage.run_stage(run_context)
"""

from __future__ import annotations

from stackpilot.stages.base import BaseStage, StageExecutionError, StagePrerequisiteError
from stackpilot.stages.s0_resolve import ResolveStage
from stackpilot.stages.s1_backend import BackendStage
from stackpilot.stages.s2_build import BuildStage
from stackpilot.stages.s3_reconcile import ReconcileStage
from stackpilot.stages.s4_plan import PlanStage
from stackpilot.stages.s5_apply import ApplyStage
from stackpilot.stages.s6_initialize import InitializeStage
from stackpilot.stages.s7_verify import VerifyStage

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "s0_resolve": ResolveStage,
    "s1_backend": BackendStage,
    "s2_build": BuildStage,
    "s3_reconcile": ReconcileStage,
    "s4_plan": PlanStage,
    "s5_apply": ApplyStage,
    "s6_initialize": InitializeStage,
    "s7_verify": VerifyStage,
}

STAGE_ORDER: list[str] = list(STAGE_REGISTRY)

# Stage subsets behind the CLI commands.
PLAN_STAGES: list[str] = ["s0_resolve", "s1_backend", "s2_build", "s3_reconcile", "s4_plan"]
APPLY_STAGES: list[str] = ["s0_resolve", "s1_backend", "s5_apply", "s6_initialize", "s7_verify"]


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate and return a stage by its ``stage_id``.

    Raises ``KeyError`` if the stage_id is not registered.
    """
    try:
        cls = STAGE_REGISTRY[stage_id]
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Registered stages: {sorted(STAGE_REGISTRY.keys())}"
        ) from None
    return cls()


__all__ = [
    "BaseStage",
    "StageExecutionError",
    "StagePrerequisiteError",
    "STAGE_REGISTRY",
    "STAGE_ORDER",
    "PLAN_STAGES",
    "APPLY_STAGES",
    "get_stage",
    "ResolveStage",
    "BackendStage",
    "BuildStage",
    "ReconcileStage",
    "PlanStage",
    "ApplyStage",
    "InitializeStage",
    "VerifyStage",
]
