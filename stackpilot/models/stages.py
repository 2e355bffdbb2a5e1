"""Deployment stage state machine models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """Strict state model for each pipeline stage."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"
    DEGRADED = "degraded"  # finished, but a best-effort step needs attention


# Valid state transitions, enforced by StageMachine.
# Terminal states (PASSED, DEGRADED) have no outgoing transitions.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.BLOCKED},
    StageState.RUNNING: {
        StageState.PASSED,
        StageState.DEGRADED,
        StageState.FAILED,
        StageState.BLOCKED,
    },
    StageState.BLOCKED: {StageState.NOT_STARTED},
    StageState.FAILED: {StageState.NOT_STARTED},  # retry
    StageState.PASSED: set(),  # terminal
    StageState.DEGRADED: set(),  # terminal
}

# States that satisfy a dependent stage's prerequisite.
SATISFIED_STATES: frozenset[StageState] = frozenset(
    {StageState.PASSED, StageState.DEGRADED}
)


class StageDefinition(BaseModel):
    """Defines a pipeline stage and its prerequisites.

    ``best_effort`` stages end DEGRADED instead of FAILED when they raise
    anything other than a ``FatalStepError``.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int
    prerequisites: list[str] = []
    best_effort: bool = False


DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="s0_resolve",
        display_name="Resolve Environment",
        ordinal=0,
    ),
    StageDefinition(
        stage_id="s1_backend",
        display_name="State Backend",
        ordinal=1,
        prerequisites=["s0_resolve"],
    ),
    StageDefinition(
        stage_id="s2_build",
        display_name="Build Units",
        ordinal=2,
        prerequisites=["s1_backend"],
    ),
    StageDefinition(
        stage_id="s3_reconcile",
        display_name="Reconcile Resources",
        ordinal=3,
        prerequisites=["s2_build"],
    ),
    StageDefinition(
        stage_id="s4_plan",
        display_name="Plan",
        ordinal=4,
        prerequisites=["s3_reconcile"],
    ),
    StageDefinition(
        stage_id="s5_apply",
        display_name="Apply",
        ordinal=5,
        prerequisites=["s4_plan"],
    ),
    StageDefinition(
        stage_id="s6_initialize",
        display_name="Post-Apply Initialize",
        ordinal=6,
        prerequisites=["s5_apply"],
        best_effort=True,
    ),
    StageDefinition(
        stage_id="s7_verify",
        display_name="Health Check",
        ordinal=7,
        prerequisites=["s6_initialize"],
        best_effort=True,
    ),
]
