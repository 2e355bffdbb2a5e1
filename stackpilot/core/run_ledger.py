"""Append-only, hash-chained Run Ledger backed by SQLite.

The ledger is the local record of every deployment run: which stages ran,
what they consumed and produced, and why they failed or degraded. The
``status`` command is a projection of it.

Design:
- Append-only: only `append()` method; no update, no delete.
- Hash-chained: each entry includes SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

from stackpilot.core.hasher import compute_entry_hash
from stackpilot.models.ledger import LedgerEntry


_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    environment           TEXT NOT NULL DEFAULT '',
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_refs_json    TEXT NOT NULL DEFAULT '[]',
    detail                TEXT NOT NULL DEFAULT '',
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_SELECT_COLUMNS = (
    "entry_id, run_id, stage_id, state_transition, timestamp_utc, environment, "
    "input_hash, output_hash, artifact_refs_json, detail, previous_entry_hash, entry_hash"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry to the ledger, computing hash chain links.

        Returns the entry with `previous_entry_hash` and `entry_hash` set.
        """
        previous_hash = self._get_latest_hash(entry.run_id)

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""

        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": compute_entry_hash(entry_dict),
            }
        )
        self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO run_ledger ({_SELECT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.stage_id,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.environment,
                    entry.input_hash,
                    entry.output_hash,
                    json.dumps(entry.artifact_references),
                    entry.detail,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_stage_history(self, run_id: str, stage_id: str) -> list[LedgerEntry]:
        return [e for e in self.get_run_entries(run_id) if e.stage_id == stage_id]

    def get_all_run_ids(self, environment: str | None = None) -> list[str]:
        """Return distinct run_ids, most recent first.

        With *environment*, only runs that resolved to that environment.
        """
        query = "SELECT run_id, MAX(id) AS last_id FROM run_ledger"
        params: tuple[str, ...] = ()
        if environment is not None:
            query += " WHERE run_id IN (SELECT run_id FROM run_ledger WHERE environment = ?)"
            params = (environment,)
        with self._connect() as conn:
            rows = conn.execute(query + " GROUP BY run_id ORDER BY last_id DESC", params).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            entry_id,
            run_id,
            stage_id,
            state_transition,
            timestamp_utc,
            environment,
            input_hash,
            output_hash,
            artifact_refs_json,
            detail,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            environment=environment,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=json.loads(artifact_refs_json),
            detail=detail,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
