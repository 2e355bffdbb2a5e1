"""Stage 1: State Backend.

Makes sure the durable state store and its lock exist before anything
plans or applies, and hands later stages a ``StateBackend`` bound to the
environment. Any failure here is fatal.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.bootstrapper import StateBackendBootstrapper
from stackpilot.core.state_backend import LocalStateBackend, S3StateBackend
from stackpilot.models.environment import EnvironmentDescriptor
from stackpilot.models.outcomes import ConfigurationError, StepOutcome
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


class BackendStage(BaseStage):
    """Stage 1: ensure the state backend and bind the cloud collaborators."""

    @property
    def stage_id(self) -> str:
        return "s1_backend"

    @property
    def display_name(self) -> str:
        return "State Backend"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor: EnvironmentDescriptor = run_context["descriptor"]
        settings = run_context["settings"]

        if not descriptor.project_id:
            raise ConfigurationError(
                f"project_id is not configured for environment {descriptor.name}"
            )

        services = run_context["services_factory"](descriptor)
        run_context["services"] = services

        if settings.uses_local_state:
            backend = LocalStateBackend(settings.local_state_path, descriptor.name)
            handle = backend.handle
        else:
            bootstrapper = StateBackendBootstrapper(
                services.s3, services.dynamodb, descriptor.region
            )
            handle = bootstrapper.ensure_backend(descriptor.project_id, descriptor.name)
            backend = S3StateBackend(services.s3, services.dynamodb, handle)

        run_context["state_backend"] = backend
        return {
            "store_location": handle.store_location,
            "lock_table_name": handle.lock_table_name,
            "encrypted": handle.encrypted,
            "outcomes": [
                StepOutcome.success("bootstrap", "state backend ready", store=handle.store_location)
            ],
        }
