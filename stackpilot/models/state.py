"""Managed-state models: backend handle, lock info, resource records.

``StackState`` is the document persisted in the state backend. ``lineage``
identifies one environment's state history; ``serial`` increments on every
write so a plan can be bound to the exact state it was computed against.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StateBackendHandle(BaseModel):
    """Location of the durable state store and its lock table."""

    model_config = ConfigDict(frozen=True)

    store_location: str  # "s3://bucket/key" or a local path
    lock_table_name: str
    encrypted: bool = True


class ResourceMode(str, Enum):
    """How a resource came under management."""

    CREATED = "created"
    IMPORTED = "imported"


class ManagedResourceRecord(BaseModel):
    """One tracked resource in managed state.

    ``properties`` are the desired properties last applied (references left
    unresolved so that plans compare like with like). ``attributes`` are the
    observed values returned by the cloud after create/update/import.
    """

    model_config = ConfigDict(frozen=True)

    resource_key: str
    mode: ResourceMode
    external_identifier: str
    type_name: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)


class StackState(BaseModel):
    """Snapshot of everything under management for one environment."""

    model_config = ConfigDict(frozen=True)

    lineage: str = ""  # assigned on first write; "" means no state yet
    serial: int = 0
    resources: dict[str, ManagedResourceRecord] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def get(self, resource_key: str) -> ManagedResourceRecord | None:
        return self.resources.get(resource_key)

    def with_record(self, record: ManagedResourceRecord) -> StackState:
        """Return a copy with *record* added or replaced, serial bumped."""
        resources = dict(self.resources)
        resources[record.resource_key] = record
        return self.model_copy(
            update={
                "resources": resources,
                "serial": self.serial + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    def initialized(self) -> StackState:
        """Return self, or a copy with a fresh lineage when none is set yet."""
        if self.lineage:
            return self
        return self.model_copy(update={"lineage": str(uuid.uuid4())})

    def with_metadata(self, **values: Any) -> StackState:
        """Return a copy with *values* merged into metadata, serial bumped."""
        return self.model_copy(
            update={
                "metadata": {**self.metadata, **values},
                "serial": self.serial + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    def without(self, resource_key: str) -> StackState:
        """Return a copy with *resource_key* removed, serial bumped."""
        resources = {k: v for k, v in self.resources.items() if k != resource_key}
        return self.model_copy(
            update={
                "resources": resources,
                "serial": self.serial + 1,
                "updated_at": datetime.now(timezone.utc),
            }
        )


class LockInfo(BaseModel):
    """Holder record written into the lock table while a lock is held."""

    model_config = ConfigDict(frozen=True)

    lock_id: str
    operation: str
    who: str = ""
    run_id: str = ""
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
