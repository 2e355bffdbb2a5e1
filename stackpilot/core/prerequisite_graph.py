"""Prerequisite DAG over the deployment stages.

A stage may start once every prerequisite is PASSED or DEGRADED. A fatal
failure blocks every stage downstream of it, so a run that fails in apply
shows initialize and verify as BLOCKED rather than silently NOT_STARTED.
Retrying the failed stage and passing it unblocks its direct dependents.
"""

from __future__ import annotations

from collections import deque

from stackpilot.models.stages import SATISFIED_STATES, StageDefinition, StageState


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage cannot run because prerequisites are not met."""


class CyclicDependencyError(ValueError):
    """Raised when the prerequisite graph contains a cycle."""


class PrerequisiteGraph:
    """Directed acyclic graph of stage prerequisites.

    The execution order is computed once at construction (Kahn's algorithm,
    ties broken by ordinal); a cycle is rejected there.
    """

    def __init__(self, stage_definitions: list[StageDefinition]) -> None:
        self._stages = {sd.stage_id: sd for sd in stage_definitions}
        self._prerequisites = {sd.stage_id: list(sd.prerequisites) for sd in stage_definitions}
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._stages}
        for sd in stage_definitions:
            for prereq in sd.prerequisites:
                if prereq in self._dependents:
                    self._dependents[prereq].append(sd.stage_id)
        self._order = self._topological_order()

    def _by_ordinal(self, stage_ids) -> list[str]:
        return sorted(stage_ids, key=lambda sid: self._stages[sid].ordinal)

    def _topological_order(self) -> list[str]:
        in_degree = {
            sid: sum(1 for p in prereqs if p in self._stages)
            for sid, prereqs in self._prerequisites.items()
        }
        queue = deque(self._by_ordinal(sid for sid, deg in in_degree.items() if deg == 0))
        order: list[str] = []
        while queue:
            node = queue.popleft()
            order.append(node)
            for dep in self._by_ordinal(self._dependents[node]):
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)
        if len(order) != len(self._stages):
            cyclic = sorted(set(self._stages) - set(order))
            raise CyclicDependencyError(f"Prerequisite graph has a cycle through {cyclic}")
        return order

    @property
    def stage_ids(self) -> list[str]:
        """All stage_ids in execution order."""
        return list(self._order)

    def get_stage_definition(self, stage_id: str) -> StageDefinition:
        return self._stages[stage_id]

    def get_dependents(self, stage_id: str) -> list[str]:
        """Every stage downstream of *stage_id*, nearest first."""
        found: list[str] = []
        queue = deque(self._dependents.get(stage_id, []))
        while queue:
            node = queue.popleft()
            if node not in found:
                found.append(node)
                queue.extend(self._dependents.get(node, []))
        return found

    # ------------------------------------------------------------------
    # Prerequisite checking
    # ------------------------------------------------------------------

    def are_prerequisites_met(self, stage_id: str, states: dict[str, StageState]) -> bool:
        return not self._unsatisfied(stage_id, states)

    def get_blocking_reasons(self, stage_id: str, states: dict[str, StageState]) -> list[str]:
        """Human-readable reasons why *stage_id* cannot start yet."""
        reasons = []
        for prereq, state in self._unsatisfied(stage_id, states):
            name = self._stages[prereq].display_name if prereq in self._stages else prereq
            reasons.append(f"{name} ({prereq}) is {state.value}")
        return reasons

    def _unsatisfied(
        self, stage_id: str, states: dict[str, StageState]
    ) -> list[tuple[str, StageState]]:
        pending = []
        for prereq in self._prerequisites.get(stage_id, []):
            state = states.get(prereq, StageState.NOT_STARTED)
            if state not in SATISFIED_STATES:
                pending.append((prereq, state))
        return pending

    # ------------------------------------------------------------------
    # Cascades (mutate *states* in place, return the stage_ids touched)
    # ------------------------------------------------------------------

    def cascade_block(self, failed_stage_id: str, states: dict[str, StageState]) -> list[str]:
        blocked = [
            sid
            for sid in self.get_dependents(failed_stage_id)
            if states.get(sid, StageState.NOT_STARTED) == StageState.NOT_STARTED
        ]
        for sid in blocked:
            states[sid] = StageState.BLOCKED
        return blocked

    def cascade_unblock(self, passed_stage_id: str, states: dict[str, StageState]) -> list[str]:
        unblocked = []
        for sid in self._dependents.get(passed_stage_id, []):
            if states.get(sid) == StageState.BLOCKED and self.are_prerequisites_met(sid, states):
                states[sid] = StageState.NOT_STARTED
                unblocked.append(sid)
        return unblocked
