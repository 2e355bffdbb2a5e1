"""stackpilot data models, all Pydantic v2 and frozen."""

from stackpilot.models.artifacts import (
    BuildArtifact,
    ContentAddressedArtifact,
    CredentialReference,
)
from stackpilot.models.changes import (
    ApplyOutputs,
    ChangeAction,
    ChangeArtifact,
    ResourceChange,
)
from stackpilot.models.database import (
    CreatedDatabase,
    DatabaseBinding,
    ImportedDatabase,
)
from stackpilot.models.environment import (
    EnvironmentDescriptor,
    EnvironmentFlags,
    Trigger,
    TriggerKind,
)
from stackpilot.models.ledger import LedgerEntry
from stackpilot.models.outcomes import (
    ConfigurationError,
    FatalStepError,
    RunReport,
    RunStatus,
    Severity,
    StepOutcome,
)
from stackpilot.models.resources import DesiredStack, OutputSpec, ResourceSpec
from stackpilot.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)
from stackpilot.models.state import (
    LockInfo,
    ManagedResourceRecord,
    ResourceMode,
    StackState,
    StateBackendHandle,
)

__all__ = [
    # environment
    "Trigger",
    "TriggerKind",
    "EnvironmentFlags",
    "EnvironmentDescriptor",
    # database
    "CreatedDatabase",
    "ImportedDatabase",
    "DatabaseBinding",
    # state
    "StateBackendHandle",
    "LockInfo",
    "ResourceMode",
    "ManagedResourceRecord",
    "StackState",
    # resources
    "ResourceSpec",
    "OutputSpec",
    "DesiredStack",
    # changes
    "ChangeAction",
    "ResourceChange",
    "ChangeArtifact",
    "ApplyOutputs",
    # artifacts
    "ContentAddressedArtifact",
    "BuildArtifact",
    "CredentialReference",
    # outcomes
    "Severity",
    "StepOutcome",
    "FatalStepError",
    "ConfigurationError",
    "RunStatus",
    "RunReport",
    # stages
    "StageState",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
    # ledger
    "LedgerEntry",
]
