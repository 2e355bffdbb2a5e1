"""Per-step outcome types and the run report that aggregates them.

Steps never signal a Degraded failure by raising: they return a
``StepOutcome``. Fatal failures are raised as ``FatalStepError`` subclasses
and recorded once by the orchestrator before the run aborts.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """How a non-success outcome affects the run."""

    OK = "ok"
    ADVISORY = "advisory"
    DEGRADED = "degraded"
    FATAL = "fatal"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"  # infrastructure changed, a post-step needs attention
    FAILED = "failed"  # infrastructure change failed, re-run


class StepOutcome(BaseModel):
    """Result of one step, with enough context to diagnose a failure."""

    model_config = ConfigDict(frozen=True)

    step: str
    severity: Severity = Severity.OK
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.severity == Severity.OK

    @classmethod
    def success(cls, step: str, message: str = "", **context: Any) -> StepOutcome:
        return cls(step=step, message=message, context=context)

    @classmethod
    def degraded(cls, step: str, message: str, **context: Any) -> StepOutcome:
        return cls(step=step, severity=Severity.DEGRADED, message=message, context=context)

    @classmethod
    def advisory(cls, step: str, message: str, **context: Any) -> StepOutcome:
        return cls(step=step, severity=Severity.ADVISORY, message=message, context=context)


class FatalStepError(RuntimeError):
    """Base class for failures that abort the run."""


class RunReport(BaseModel):
    """Aggregated outcome of a deployment run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    environment: str = ""
    outcomes: list[StepOutcome] = Field(default_factory=list)
    fatal_error: str = ""
    fatal_stage: str = ""
    outputs: dict[str, str] = Field(default_factory=dict)
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def status(self) -> RunStatus:
        if self.fatal_error:
            return RunStatus.FAILED
        if any(o.severity == Severity.DEGRADED for o in self.outcomes):
            return RunStatus.DEGRADED
        return RunStatus.SUCCEEDED

    @property
    def succeeded(self) -> bool:
        """Plan and apply completed (post-step warnings don't count)."""
        return self.status != RunStatus.FAILED

    @property
    def warnings(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.severity in (Severity.DEGRADED, Severity.ADVISORY)]


class ConfigurationError(FatalStepError):
    """A required per-environment value is missing or invalid."""
