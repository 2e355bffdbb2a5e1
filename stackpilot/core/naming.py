"""Resource naming convention.

Every physical name the system creates or looks up is derived here from
the environment descriptor and a resource kind. Nothing else formats
``{project}-{env}-...`` strings.
"""

from __future__ import annotations

from enum import Enum

from stackpilot.models.environment import EnvironmentDescriptor


class ResourceKind(str, Enum):
    STATE_BUCKET = "state-bucket"
    LOCK_TABLE = "lock-table"
    CODE_BUCKET = "code-bucket"
    DOCUMENTS_BUCKET = "documents-bucket"
    DATABASE = "database"
    DB_SECRET = "db-secret"
    USER_POOL = "user-pool"
    USER_POOL_CLIENT = "user-pool-client"
    HTTP_API = "http-api"
    BASTION_SG = "bastion-sg"
    FUNCTION = "function"


# Kinds shared by every environment of a project.
_PROJECT_SCOPED = {ResourceKind.STATE_BUCKET}

_SUFFIXES: dict[ResourceKind, str] = {
    ResourceKind.STATE_BUCKET: "deploy-state",
    ResourceKind.LOCK_TABLE: "deploy-state-lock",
    ResourceKind.CODE_BUCKET: "lambda-code",
    ResourceKind.DOCUMENTS_BUCKET: "documents",
    ResourceKind.DATABASE: "postgres",
    ResourceKind.DB_SECRET: "db-credentials",
    ResourceKind.USER_POOL: "user-pool",
    ResourceKind.USER_POOL_CLIENT: "app-client",
    ResourceKind.HTTP_API: "api",
    ResourceKind.BASTION_SG: "bastion-sg",
}


def resource_name(
    descriptor: EnvironmentDescriptor, kind: ResourceKind, unit: str = ""
) -> str:
    """Return the physical name of *kind* in *descriptor*'s environment.

    ``unit`` names the compute unit for ``ResourceKind.FUNCTION``;
    underscores become hyphens (``db_init`` -> ``<project>-<env>-db-init``).
    """
    if not descriptor.project_id:
        raise ValueError("project_id is required to derive resource names")

    if kind == ResourceKind.FUNCTION:
        if not unit:
            raise ValueError("unit is required for function names")
        return f"{descriptor.project_id}-{descriptor.name}-{unit.replace('_', '-')}"

    if kind in _PROJECT_SCOPED:
        return f"{descriptor.project_id}-{_SUFFIXES[kind]}"
    return f"{descriptor.project_id}-{descriptor.name}-{_SUFFIXES[kind]}"


def state_key(descriptor: EnvironmentDescriptor) -> str:
    """Object key of the environment's state document in the state bucket."""
    return f"{descriptor.name}/stack.state.json"
