"""RunProjection: read-only view of a deployment run over the RunLedger.

The projection never stores state. Every ``snapshot()`` re-reads the
ledger and replays the transitions it holds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stackpilot.core.run_ledger import RunLedger
from stackpilot.models.ledger import LedgerEntry
from stackpilot.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    SATISFIED_STATES,
    StageDefinition,
    StageState,
)


class StageStatus(BaseModel):
    """Point-in-time status of a single stage, derived from ledger entries."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str = ""
    artifact_refs: list[str] = []


class RunSnapshot(BaseModel):
    """A frozen view of one run, computed fresh on every call."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    environment: str = ""
    stages: list[StageStatus] = []
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stages if s.state in SATISFIED_STATES)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def degraded_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.DEGRADED]


class RunProjection:
    """Replays a run's ledger entries into a ``RunSnapshot``.

    Stages that never appear in the ledger (the ones a ``plan`` or
    ``apply`` run skipped) are left out of the snapshot.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stage_definitions: list[StageDefinition] | None = None,
    ) -> None:
        definitions = stage_definitions or DEFAULT_STAGE_DEFINITIONS
        self._ledger = ledger
        self._stage_defs = {sd.stage_id: sd for sd in definitions}
        self._stage_order = [sd.stage_id for sd in sorted(definitions, key=lambda sd: sd.ordinal)]

    def snapshot(self, run_id: str) -> RunSnapshot:
        entries = self._ledger.get_run_entries(run_id)
        states = self._compute_stage_states(entries)

        stages: list[StageStatus] = []
        for stage_id in self._stage_order:
            if stage_id not in states:
                continue
            info = states[stage_id]
            sd = self._stage_defs.get(stage_id)
            stages.append(
                StageStatus(
                    stage_id=stage_id,
                    display_name=sd.display_name if sd else stage_id,
                    state=info["state"],
                    entered_at=info["entered_at"],
                    detail=info["detail"],
                    artifact_refs=info["artifact_refs"],
                )
            )

        environment = next((e.environment for e in reversed(entries) if e.environment), "")
        return RunSnapshot(
            run_id=run_id,
            environment=environment,
            stages=stages,
            chain_valid=self._check_chain_valid(run_id),
            last_updated=entries[-1].timestamp_utc if entries else datetime.now(timezone.utc),
        )

    @staticmethod
    def _compute_stage_states(entries: list[LedgerEntry]) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for entry in entries:
            info = result.setdefault(
                entry.stage_id,
                {
                    "state": StageState.NOT_STARTED,
                    "entered_at": None,
                    "detail": "",
                    "artifact_refs": [],
                },
            )
            if "->" in entry.state_transition:
                _, to_state = entry.state_transition.split("->", 1)
                try:
                    info["state"] = StageState(to_state)
                except ValueError:
                    continue
                info["entered_at"] = entry.timestamp_utc
                info["detail"] = entry.detail
            info["artifact_refs"].extend(entry.artifact_references)
        return result

    def _check_chain_valid(self, run_id: str) -> bool:
        """Check hash chain integrity without raising."""
        try:
            return self._ledger.verify_chain(run_id)
        except Exception:
            return False
