"""Change-set models produced by planning and consumed by apply."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stackpilot.models.resources import OutputSpec


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceChange(BaseModel):
    """A single proposed mutation of one resource."""

    model_config = ConfigDict(frozen=True)

    resource_key: str
    action: ChangeAction
    type_name: str
    identifier: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    depends_on: list[str] = Field(default_factory=list)


class ChangeArtifact(BaseModel):
    """Immutable, computed change set bound to the inputs that produced it.

    ``state_lineage`` and ``state_serial`` pin the remote state the plan was
    computed against; apply refuses the artifact if either has moved.
    """

    model_config = ConfigDict(frozen=True)

    environment: str
    project_id: str
    state_lineage: str
    state_serial: int
    config_hash: str
    variables: dict[str, Any] = Field(default_factory=dict)
    changes: list[ResourceChange] = Field(default_factory=list)
    outputs: list[OutputSpec] = Field(default_factory=list)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_noop(self) -> bool:
        """True when applying would mutate nothing."""
        return not self.changes

    def summary(self) -> dict[str, int]:
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        return counts


class ApplyOutputs(BaseModel):
    """Structured outputs of a successful apply."""

    model_config = ConfigDict(frozen=True)

    entry_point_address: str = ""
    identity_client_id: str = ""
    credential_secret_id: str = ""
    values: dict[str, str] = Field(default_factory=dict)
    changes_applied: int = 0
    state_serial: int = 0

    def as_env_lines(self) -> list[str]:
        """Flat KEY=value lines consumed by the UI build."""
        return [
            f"COGNITO_CLIENT_ID={self.identity_client_id}",
            f"API_ENDPOINT={self.entry_point_address}",
        ]
