"""Stage state machine for one deployment run.

Every transition is validated against ``VALID_TRANSITIONS`` and appended to
the run ledger before the in-memory view changes. Entering RUNNING requires
satisfied prerequisites. FAILED blocks everything downstream; PASSED or
DEGRADED unblocks dependents left blocked by an earlier failure. Cascaded
transitions are ledger entries too, so ``status`` replays them exactly.
"""

from __future__ import annotations

from stackpilot.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from stackpilot.core.run_ledger import RunLedger
from stackpilot.models.ledger import LedgerEntry
from stackpilot.models.stages import (
    SATISFIED_STATES,
    VALID_TRANSITIONS,
    StageState,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageMachine:
    """Validates stage transitions and records them in the run ledger.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    graph:
        The prerequisite graph for dependency checking.
    """

    def __init__(self, ledger: RunLedger, graph: PrerequisiteGraph) -> None:
        self._ledger = ledger
        self._graph = graph
        self._states: dict[str, dict[str, StageState]] = {}

    def _run_states(self, run_id: str) -> dict[str, StageState]:
        if run_id not in self._states:
            self._states[run_id] = self._replay(run_id)
        return self._states[run_id]

    def _replay(self, run_id: str) -> dict[str, StageState]:
        """Rebuild the state of every stage from the run's ledger entries."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        for entry in self._ledger.get_run_entries(run_id):
            _, _, to_state = entry.state_transition.partition("->")
            try:
                states[entry.stage_id] = StageState(to_state)
            except ValueError:
                continue
        return states

    def _record(
        self, run_id: str, stage_id: str, current: StageState, target: StageState, **fields
    ) -> LedgerEntry:
        sealed = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                stage_id=stage_id,
                state_transition=f"{current.value}->{target.value}",
                **fields,
            )
        )
        self._run_states(run_id)[stage_id] = target
        return sealed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageState]:
        """Start *run_id* with every stage NOT_STARTED."""
        self._states[run_id] = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        return dict(self._states[run_id])

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        return self._run_states(run_id).get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        return dict(self._run_states(run_id))

    def can_start(self, run_id: str, stage_id: str) -> tuple[bool, list[str]]:
        """Return (startable, blocking_reasons) without changing anything."""
        states = self._run_states(run_id)
        current = states.get(stage_id, StageState.NOT_STARTED)
        if current != StageState.NOT_STARTED:
            return False, [f"Stage is currently {current.value}, not not_started"]
        reasons = self._graph.get_blocking_reasons(stage_id, states)
        return not reasons, reasons

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        environment: str = "",
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        """Move *stage_id* to *target_state* and return the sealed entry.

        Raises ``InvalidTransitionError`` for a move the table forbids and
        ``PrerequisiteNotMetError`` when entering RUNNING too early.
        """
        states = self._run_states(run_id)
        current = states.get(stage_id, StageState.NOT_STARTED)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        if target_state == StageState.RUNNING:
            reasons = self._graph.get_blocking_reasons(stage_id, states)
            if reasons:
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: prerequisites not met. "
                    f"Blocked by: {'; '.join(reasons)}"
                )

        sealed = self._record(
            run_id,
            stage_id,
            current,
            target_state,
            environment=environment,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifact_references or [],
            detail=detail,
        )

        if target_state == StageState.FAILED:
            for blocked_id in self._graph.cascade_block(stage_id, dict(states)):
                self._record(
                    run_id,
                    blocked_id,
                    StageState.NOT_STARTED,
                    StageState.BLOCKED,
                    environment=environment,
                    detail=f"blocked by {stage_id}",
                )
        elif target_state in SATISFIED_STATES:
            for unblocked_id in self._graph.cascade_unblock(stage_id, dict(states)):
                self._record(
                    run_id,
                    unblocked_id,
                    StageState.BLOCKED,
                    StageState.NOT_STARTED,
                    environment=environment,
                )
        return sealed
