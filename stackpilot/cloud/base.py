"""Protocols for the cloud collaborators the orchestration drives.

The orchestration never talks to a provider SDK directly outside
``stackpilot.cloud.aws`` and the bootstrapper; everything else depends on
these Protocols, so tests and alternative providers plug in without
touching the pipeline.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class ResourceNotFoundError(RuntimeError):
    """Raised by drivers when a resource does not exist."""


class ResourceOperationError(RuntimeError):
    """Raised by drivers when a create/update/delete does not complete."""


class InvocationResult(BaseModel):
    """Outcome of invoking a compute unit.

    ``function_error`` is set when the unit itself failed (handled or
    unhandled), which is distinct from a transport-level failure (raised).
    """

    model_config = ConfigDict(frozen=True)

    status_code: int = 200
    function_error: str | None = None
    payload: Any = None

    @property
    def succeeded(self) -> bool:
        return self.function_error is None and 200 <= self.status_code < 300


class ResourceSnapshot(BaseModel):
    """What a driver reports about a live resource."""

    model_config = ConfigDict(frozen=True)

    external_identifier: str
    attributes: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class ResourceDriver(Protocol):
    """Creates, updates, deletes and looks up opaque resource units."""

    def create(
        self, type_name: str, identifier: str, properties: dict[str, Any]
    ) -> ResourceSnapshot: ...

    def update(
        self,
        type_name: str,
        external_identifier: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> ResourceSnapshot: ...

    def delete(self, type_name: str, external_identifier: str) -> None: ...

    def lookup(self, type_name: str, identifier: str) -> ResourceSnapshot | None:
        """Return the live resource, or None when it does not exist."""
        ...


@runtime_checkable
class SecretStore(Protocol):
    """Named secrets holding a JSON payload."""

    def get_secret(self, secret_id: str) -> dict[str, Any] | None: ...


@runtime_checkable
class BackingStore(Protocol):
    """The stateful database collaborator."""

    def status(self, identifier: str) -> str | None:
        """Return the named status (e.g. ``"available"``), None if not found."""
        ...

    def connection_facts(self, identifier: str) -> dict[str, Any]: ...


@runtime_checkable
class ComputeService(Protocol):
    """Serverless compute units."""

    def invoke(self, function_name: str, payload: dict[str, Any]) -> InvocationResult: ...

    def get_environment(self, function_name: str) -> dict[str, str]: ...

    def update_environment(self, function_name: str, variables: dict[str, str]) -> None: ...

    def update_code(self, function_name: str, bucket: str, key: str) -> None: ...


@runtime_checkable
class CodeBucket(Protocol):
    """Object storage for packaged compute units."""

    def ensure_bucket(self, bucket: str, region: str) -> None: ...

    def upload(self, bucket: str, key: str, data: bytes) -> None: ...


class CloudServices(BaseModel):
    """The collaborators one run talks to, bound to one account and region.

    ``s3`` and ``dynamodb`` are raw SDK clients used by the backend
    bootstrapper and the remote state backend; they stay ``None`` when
    state is kept on the local filesystem.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    driver: Any
    secrets: Any
    backing_store: Any
    compute: Any
    code_bucket: Any
    s3: Any = None
    dynamodb: Any = None
