"""Content-addressed artifact models (immutable)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentAddressedArtifact(BaseModel):
    """Metadata for a stored artifact; the bytes themselves live in the store.

    The content_address is both the identity and the integrity check.
    """

    model_config = ConfigDict(frozen=True)

    content_address: str  # "sha256:<hex>"
    artifact_type: str
    name: str
    size_bytes: int
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    metadata: dict[str, Any] = {}


class BuildArtifact(BaseModel):
    """A packaged compute unit, held in the artifact store."""

    model_config = ConfigDict(frozen=True)

    unit: str  # logical unit name, e.g. "document_processor"
    content_address: str
    size_bytes: int

    @property
    def digest(self) -> str:
        return self.content_address.removeprefix("sha256:")

    @property
    def object_key(self) -> str:
        """Key under which the package is uploaded to the code bucket."""
        return f"lambda/{self.unit}/{self.digest[:16]}.zip"


class CredentialReference(BaseModel):
    """Pointer to the secret holding backing-store credentials."""

    model_config = ConfigDict(frozen=True)

    secret_identifier: str
    rotated: bool = False
