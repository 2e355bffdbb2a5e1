"""Stage 2: Build Units.

Packages every compute unit (in parallel), uploads the packages to the
environment's code bucket and records a build manifest in the artifact
store for the apply-side stages.
"""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.core.builder import UnitBuilder, save_manifest
from stackpilot.core.naming import ResourceKind, resource_name
from stackpilot.core.stack import ALL_UNITS
from stackpilot.models.outcomes import StepOutcome
from stackpilot.stages.base import BaseStage

logger = logging.getLogger(__name__)


class BuildStage(BaseStage):
    """Stage 2: build and upload unit packages."""

    @property
    def stage_id(self) -> str:
        return "s2_build"

    @property
    def display_name(self) -> str:
        return "Build Units"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        descriptor = run_context["descriptor"]
        settings = run_context["settings"]
        store = run_context["artifact_store"]
        services = run_context["services"]

        builder = UnitBuilder(store, settings.source_path, workers=settings.build_workers)
        builds = builder.build_all(ALL_UNITS)

        bucket = resource_name(descriptor, ResourceKind.CODE_BUCKET)
        services.code_bucket.ensure_bucket(bucket, descriptor.region)
        for unit in ALL_UNITS:
            artifact = builds[unit]
            services.code_bucket.upload(
                bucket, artifact.object_key, store.retrieve(artifact.content_address)
            )
            logger.info("Uploaded %s to s3://%s/%s", unit, bucket, artifact.object_key)

        manifest_address = save_manifest(store, builds)
        run_context["builds"] = builds
        return {
            "code_bucket": bucket,
            "builds": {unit: artifact.content_address for unit, artifact in sorted(builds.items())},
            "artifact_references": [manifest_address]
            + [builds[unit].content_address for unit in ALL_UNITS],
            "outcomes": [
                StepOutcome.success("build", f"built {len(builds)} units", code_bucket=bucket)
            ],
        }
