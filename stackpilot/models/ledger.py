"""Run Ledger entry model (append-only, hash-chained).

One entry per stage state transition. Entries link to their predecessor
via SHA-256, so a run's history can be verified after the fact.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    environment: str = ""
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content-addressed keys
    detail: str = ""  # failure or warning text
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry
