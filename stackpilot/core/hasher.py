"""Canonical hashing helpers for plan binding, idempotency and content addressing."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes (sorted keys, compact separators).

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_input_hash(stage_id: str, inputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + sorted inputs)."""
    payload = {"stage_id": stage_id, "inputs": inputs}
    return sha256_hex(canonical_json_bytes(payload))


def compute_output_hash(stage_id: str, outputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + sorted outputs)."""
    payload = {"stage_id": stage_id, "outputs": outputs}
    return sha256_hex(canonical_json_bytes(payload))


def compute_config_hash(desired: dict[str, Any], variables: dict[str, Any]) -> str:
    """SHA-256 of the desired configuration and the input variables.

    Two plans with the same config hash against the same state serial
    describe the same change set.
    """
    return sha256_hex(canonical_json_bytes({"desired": desired, "variables": variables}))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself)."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
