"""Post-deploy smoke test: one synthetic request to the entry unit."""

from __future__ import annotations

import logging
from typing import Any

from stackpilot.cloud.base import ComputeService
from stackpilot.models.outcomes import StepOutcome

logger = logging.getLogger(__name__)

STEP = "health_check"
HEALTH_CHECK_PAYLOAD: dict[str, Any] = {"action": "healthcheck"}


class HealthVerifier:
    def __init__(self, compute: ComputeService) -> None:
        self._compute = compute

    def check(self, function_name: str) -> StepOutcome:
        """Invoke *function_name*; any failure is a warning, never an error."""
        try:
            result = self._compute.invoke(function_name, HEALTH_CHECK_PAYLOAD)
        except Exception as exc:
            logger.warning("Health check of %s could not be invoked: %s", function_name, exc)
            return StepOutcome.degraded(
                STEP, "health check invocation failed", function_name=function_name, error=str(exc)
            )
        if not result.succeeded:
            logger.warning(
                "Health check of %s returned %s: %s",
                function_name,
                result.function_error or result.status_code,
                result.payload,
            )
            return StepOutcome.degraded(
                STEP,
                "health check reported an error",
                function_name=function_name,
                function_error=result.function_error or "",
                status_code=result.status_code,
            )
        logger.info("Health check of %s passed", function_name)
        return StepOutcome.success(STEP, "entry point responded", function_name=function_name)
