"""Trigger and environment descriptor models.

A run starts from a ``Trigger`` (a branch push or a manual request) and the
resolver turns it into an ``EnvironmentDescriptor``. The descriptor is frozen:
every later stage reads it, none may change it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TriggerKind(str, Enum):
    """How a deployment run was started."""

    PUSH = "push"
    MANUAL = "manual"


class Trigger(BaseModel):
    """The event that started a run.

    Push triggers only carry ``branch``. Manual triggers carry an explicit
    environment choice and optional overrides; ``None`` means "not given".
    """

    model_config = ConfigDict(frozen=True)

    kind: TriggerKind
    branch: str = ""
    environment: str | None = None
    reset_credential: bool | None = None
    ingress_allowlist: str | None = None
    wait_for_readiness: bool | None = None

    @classmethod
    def push(cls, branch: str) -> Trigger:
        return cls(kind=TriggerKind.PUSH, branch=branch)

    @classmethod
    def manual(
        cls,
        environment: str,
        *,
        reset_credential: bool = False,
        ingress_allowlist: str | None = None,
        wait_for_readiness: bool = True,
    ) -> Trigger:
        return cls(
            kind=TriggerKind.MANUAL,
            environment=environment,
            reset_credential=reset_credential,
            ingress_allowlist=ingress_allowlist,
            wait_for_readiness=wait_for_readiness,
        )


class EnvironmentFlags(BaseModel):
    """Per-run switches derived from the trigger and environment name."""

    model_config = ConfigDict(frozen=True)

    reset_credential: bool = False
    wait_for_readiness: bool = True
    lifecycle_rules_enabled: bool = False
    ingress_allowlist: str = "0.0.0.0/0"


class EnvironmentDescriptor(BaseModel):
    """Everything a run knows about its target environment.

    ``project_id`` and ``region`` may be empty when the per-environment
    configuration source was missing; consumers that need them validate.
    ``settings`` holds the remaining key/values from the source verbatim.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    project_id: str = ""
    region: str = ""
    flags: EnvironmentFlags = EnvironmentFlags()
    settings: dict[str, Any] = Field(default_factory=dict)

    def setting(self, key: str, default: Any = None) -> Any:
        """Return a per-environment setting, or *default* when absent."""
        return self.settings.get(key, default)
