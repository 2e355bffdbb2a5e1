"""Post-apply initialization of the backing store and compute units.

Every step here is best-effort: it returns ``StepOutcome`` values and never
raises. A missed step degrades the run; it never fails it.

Readiness of the backing store is a small state machine::

    unknown -> checking -> available | not_found | other
                  ^                         |         |
                  +-------- next poll ------+---------+

``available`` is the only success. Running out of polls is a degraded
terminal, so a slow store never wedges the deployment.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum

from stackpilot.cloud.base import BackingStore, ComputeService, InvocationResult
from stackpilot.core.retry import RetryPolicy, run_with_retry
from stackpilot.models.artifacts import BuildArtifact, CredentialReference
from stackpilot.models.outcomes import StepOutcome

logger = logging.getLogger(__name__)

STEP_READINESS = "readiness"
STEP_PROPAGATE = "propagate_credential"
STEP_REPUSH = "repush_code"
STEP_SCHEMA = "schema_init"


class ReadinessState(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    AVAILABLE = "available"
    NOT_FOUND = "not_found"
    OTHER = "other"


def classify_status(status: str | None) -> ReadinessState:
    """Map a raw store status onto the readiness states."""
    if status is None:
        return ReadinessState.NOT_FOUND
    if status == "available":
        return ReadinessState.AVAILABLE
    return ReadinessState.OTHER


class PostApplyInitializer:
    """Runs the post-apply steps against the deployed environment.

    Parameters
    ----------
    compute:
        Compute service hosting the units.
    backing_store:
        The database collaborator polled for readiness.
    readiness_attempts, readiness_delay:
        Bound and fixed interval of the readiness wait.
    init_attempts, init_delay:
        Bound and fixed interval of the schema initialization invocation.
    sleep:
        Injected for tests.
    """

    def __init__(
        self,
        compute: ComputeService,
        backing_store: BackingStore,
        *,
        readiness_attempts: int = 60,
        readiness_delay: float = 10.0,
        init_attempts: int = 5,
        init_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._compute = compute
        self._backing_store = backing_store
        self._sleep = sleep
        self.readiness_policy = RetryPolicy(
            max_attempts=readiness_attempts,
            fixed_delay=readiness_delay,
            success_predicate=lambda state: state == ReadinessState.AVAILABLE,
        )
        self.init_policy = RetryPolicy(
            max_attempts=init_attempts,
            fixed_delay=init_delay,
            success_predicate=lambda result: isinstance(result, InvocationResult) and result.succeeded,
        )
        self.readiness_state = ReadinessState.UNKNOWN

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def wait_for_readiness(self, identifier: str) -> StepOutcome:
        self.readiness_state = ReadinessState.UNKNOWN
        observed: list[str | None] = []

        def poll() -> ReadinessState:
            self.readiness_state = ReadinessState.CHECKING
            status = self._backing_store.status(identifier)
            observed.append(status)
            self.readiness_state = classify_status(status)
            logger.info(
                "Database %s status %s (check %d/%d)",
                identifier,
                status or "not found",
                len(observed),
                self.readiness_policy.max_attempts,
            )
            return self.readiness_state

        result = run_with_retry(
            self.readiness_policy, poll, label=f"readiness of {identifier}", sleep=self._sleep
        )
        last_status = observed[-1] if observed else None
        if result.succeeded:
            return StepOutcome.success(
                STEP_READINESS,
                f"database {identifier} is available",
                resource_key=identifier,
                attempts=result.attempts,
            )
        logger.warning(
            "Database %s not available after %d checks (last status %s); "
            "initialization may need manual follow-up",
            identifier,
            result.attempts,
            last_status or "not found",
        )
        return StepOutcome.degraded(
            STEP_READINESS,
            f"database {identifier} did not become available",
            resource_key=identifier,
            attempts=result.attempts,
            last_status=last_status or ReadinessState.NOT_FOUND.value,
            last_error=result.last_error,
        )

    # ------------------------------------------------------------------
    # Credential propagation
    # ------------------------------------------------------------------

    def propagate_credential(
        self,
        credential: CredentialReference,
        env_key: str,
        function_names: Mapping[str, str],
    ) -> list[StepOutcome]:
        """Point every dependent unit at the current credential secret.

        Only units whose configuration already carries *env_key* are touched,
        and only that key changes. Each unit succeeds or fails on its own.
        """
        if not credential.rotated:
            return []
        outcomes: list[StepOutcome] = []
        for unit, function_name in function_names.items():
            try:
                variables = self._compute.get_environment(function_name)
                if env_key not in variables:
                    logger.info("%s does not use %s, leaving it alone", function_name, env_key)
                    continue
                self._compute.update_environment(
                    function_name, {**variables, env_key: credential.secret_identifier}
                )
            except Exception as exc:
                logger.warning("Credential update for %s failed: %s", function_name, exc)
                outcomes.append(
                    StepOutcome.degraded(
                        STEP_PROPAGATE,
                        f"could not update {env_key} on {function_name}",
                        resource_key=unit,
                        function_name=function_name,
                        error=str(exc),
                    )
                )
                continue
            logger.info("Updated %s on %s", env_key, function_name)
            outcomes.append(
                StepOutcome.success(
                    STEP_PROPAGATE, f"updated {env_key}", resource_key=unit, function_name=function_name
                )
            )
        return outcomes

    # ------------------------------------------------------------------
    # Code re-push for units outside plan/apply code management
    # ------------------------------------------------------------------

    def repush_code(
        self,
        artifacts: Mapping[str, BuildArtifact],
        bucket: str,
        function_names: Mapping[str, str],
    ) -> list[StepOutcome]:
        outcomes: list[StepOutcome] = []
        for unit, function_name in function_names.items():
            artifact = artifacts.get(unit)
            if artifact is None:
                outcomes.append(
                    StepOutcome.degraded(
                        STEP_REPUSH, f"no build artifact for {unit}", resource_key=unit
                    )
                )
                continue
            try:
                self._compute.update_code(function_name, bucket, artifact.object_key)
            except Exception as exc:
                logger.warning("Code push to %s failed: %s", function_name, exc)
                outcomes.append(
                    StepOutcome.degraded(
                        STEP_REPUSH,
                        f"could not push code to {function_name}",
                        resource_key=unit,
                        object_key=artifact.object_key,
                        error=str(exc),
                    )
                )
                continue
            outcomes.append(
                StepOutcome.success(
                    STEP_REPUSH, f"pushed {artifact.object_key}", resource_key=unit
                )
            )
        return outcomes

    # ------------------------------------------------------------------
    # Schema initialization
    # ------------------------------------------------------------------

    def initialize_schema(self, function_name: str) -> StepOutcome:
        """Invoke the idempotent schema initialization unit with retries."""
        result = run_with_retry(
            self.init_policy,
            lambda: self._compute.invoke(function_name, {}),
            label=f"schema initialization via {function_name}",
            sleep=self._sleep,
        )
        if result.succeeded:
            return StepOutcome.success(
                STEP_SCHEMA, "schema initialized", function_name=function_name, attempts=result.attempts
            )
        last = result.last_value
        detail = result.last_error
        if isinstance(last, InvocationResult):
            detail = f"{last.function_error or last.status_code}: {last.payload}"
        logger.warning(
            "Schema initialization via %s failed after %d attempts: %s",
            function_name,
            result.attempts,
            detail,
        )
        return StepOutcome.degraded(
            STEP_SCHEMA,
            "schema initialization did not succeed; run the init unit manually",
            function_name=function_name,
            attempts=result.attempts,
            last_error=detail,
        )
