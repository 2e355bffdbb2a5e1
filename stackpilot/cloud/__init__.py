"""Cloud collaborator Protocols and their AWS implementations."""

from stackpilot.cloud.base import (
    BackingStore,
    CloudServices,
    CodeBucket,
    ComputeService,
    InvocationResult,
    ResourceDriver,
    ResourceNotFoundError,
    ResourceOperationError,
    ResourceSnapshot,
    SecretStore,
)

__all__ = [
    "BackingStore",
    "CloudServices",
    "CodeBucket",
    "ComputeService",
    "InvocationResult",
    "ResourceDriver",
    "ResourceNotFoundError",
    "ResourceOperationError",
    "ResourceSnapshot",
    "SecretStore",
]
