"""Deployment orchestrator: the central coordinator for stackpilot runs.

Wires the RunLedger, StageMachine, PrerequisiteGraph and artifact store
into a sequential pipeline and aggregates every stage's outcomes into a
``RunReport``.

Failure policy:

- A fatal failure (any error in a required stage, or a ``FatalStepError``
  anywhere) fails the stage, cascades ``blocked`` to every later stage and
  ends the run. Nothing downstream runs, best-effort or not.
- A best-effort stage that misses ends ``degraded``. It still satisfies
  the next stage's prerequisite, so the run continues.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from stackpilot.cloud.base import CloudServices
from stackpilot.config import Settings, config
from stackpilot.core.artifact_store import ContentAddressedStore
from stackpilot.core.hasher import compute_input_hash
from stackpilot.core.prerequisite_graph import PrerequisiteGraph
from stackpilot.core.run_ledger import RunLedger
from stackpilot.core.stage_machine import StageMachine
from stackpilot.models.environment import EnvironmentDescriptor, Trigger
from stackpilot.models.ledger import LedgerEntry
from stackpilot.models.outcomes import FatalStepError, RunReport, Severity, StepOutcome
from stackpilot.models.stages import DEFAULT_STAGE_DEFINITIONS, StageDefinition, StageState
from stackpilot.stages import STAGE_ORDER, StageExecutionError, get_stage

logger = logging.getLogger(__name__)

ServicesFactory = Callable[[EnvironmentDescriptor], CloudServices]


def select_definitions(stage_ids: list[str]) -> list[StageDefinition]:
    """Stage definitions for a subset of stages, chained in the given order.

    Running ``apply`` on its own skips build, reconcile and plan; each
    selected stage then depends on the previously selected one.
    """
    by_id = {d.stage_id: d for d in DEFAULT_STAGE_DEFINITIONS}
    unknown = [sid for sid in stage_ids if sid not in by_id]
    if unknown:
        raise KeyError(f"Unknown stage ids: {unknown}")
    selected: list[StageDefinition] = []
    for index, sid in enumerate(stage_ids):
        prerequisites = [stage_ids[index - 1]] if index else []
        selected.append(by_id[sid].model_copy(update={"prerequisites": prerequisites}))
    return selected


def default_services_factory(settings: Settings) -> ServicesFactory:
    def factory(descriptor: EnvironmentDescriptor) -> CloudServices:
        from stackpilot.cloud.aws import aws_services

        return aws_services(
            descriptor.region,
            endpoint_url=settings.aws_endpoint_url,
            wait_delay=settings.resource_wait_delay_seconds,
            wait_max_attempts=settings.resource_wait_max_attempts,
        )

    return factory


class DeploymentOrchestrator:
    """Runs deployment stages for one trigger.

    Parameters
    ----------
    settings:
        Process settings. Uses the module-level ``config`` if not provided.
    services_factory:
        Builds the cloud collaborators once the environment is resolved.
        Defaults to the AWS implementations.
    stage_ids:
        Stages to run, in order. Defaults to the full pipeline.
    run_id:
        Explicit run id; generated if None.
    sleep:
        Sleep function used by bounded waits (injected by tests).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        services_factory: ServicesFactory | None = None,
        stage_ids: list[str] | None = None,
        run_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or config

        self.ledger = RunLedger(self.settings.ledger_path)
        self.artifact_store = ContentAddressedStore(self.settings.artifact_store_path)
        self.definitions = select_definitions(list(stage_ids or STAGE_ORDER))
        self.graph = PrerequisiteGraph(self.definitions)
        self.stage_machine = StageMachine(self.ledger, self.graph)

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = run_id or f"sp-{ts}-{uuid.uuid4().hex[:6]}"

        self._services_factory = services_factory or default_services_factory(self.settings)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self, trigger: Trigger, *, allow_mode_switch: bool = False) -> RunReport:
        """Execute every selected stage in order and report the outcome."""
        self.stage_machine.initialize_run(self.run_id)
        run_context: dict[str, Any] = {
            "run_id": self.run_id,
            "trigger": trigger,
            "settings": self.settings,
            "artifact_store": self.artifact_store,
            "services_factory": self._services_factory,
            "allow_mode_switch": allow_mode_switch,
            "sleep": self._sleep,
            "stage_definitions": {
                d.stage_id: {"prerequisites": list(d.prerequisites)} for d in self.definitions
            },
        }
        logger.info("Run %s started (%s trigger)", self.run_id, trigger.kind.value)

        outcomes: list[StepOutcome] = []
        for stage_id in self.graph.stage_ids:
            try:
                result = self.execute_stage(stage_id, run_context)
            except StageExecutionError as exc:
                cause = exc.__cause__ or exc
                return self._report(
                    run_context,
                    outcomes,
                    fatal_error=f"{type(cause).__name__}: {cause}",
                    fatal_stage=stage_id,
                )
            outcomes.extend(result["outcomes"])

        return self._report(run_context, outcomes)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def execute_stage(self, stage_id: str, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute one stage and record its transitions.

        Lifecycle:
        1. Transition to RUNNING (prerequisites checked by the state machine)
        2. Run the stage
        3. Transition to PASSED, DEGRADED or FAILED

        Re-raises ``StageExecutionError`` only for fatal failures.
        """
        definition = self.graph.get_stage_definition(stage_id)
        environment = self._environment(run_context)
        input_hash = compute_input_hash(stage_id, {"run_id": self.run_id})

        self.stage_machine.transition(
            self.run_id, stage_id, StageState.RUNNING,
            environment=environment,
            input_hash=input_hash,
        )
        run_context["stage_states"] = self.stage_machine.get_all_states(self.run_id)

        try:
            result = get_stage(stage_id).run_stage(run_context)
        except StageExecutionError as exc:
            cause = exc.__cause__
            if not definition.best_effort or isinstance(cause, FatalStepError):
                self.stage_machine.transition(
                    self.run_id, stage_id, StageState.FAILED,
                    environment=self._environment(run_context),
                    input_hash=input_hash,
                    detail=str(cause or exc),
                )
                logger.error("%s failed, run %s aborted: %s", stage_id, self.run_id, cause or exc)
                raise
            logger.warning("%s (best-effort) failed: %s", stage_id, cause or exc)
            result = {
                "outcomes": [
                    StepOutcome.degraded(stage_id, f"stage failed: {cause or exc}")
                ],
                "_output_hash": "",
            }

        degraded = [o for o in result["outcomes"] if o.severity == Severity.DEGRADED]
        target = StageState.DEGRADED if degraded else StageState.PASSED
        self.stage_machine.transition(
            self.run_id, stage_id, target,
            environment=self._environment(run_context),
            input_hash=input_hash,
            output_hash=result.get("_output_hash", ""),
            artifact_references=result.get("artifact_references", []),
            detail="; ".join(o.message for o in degraded),
        )
        return result

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        """Return current state of all stages."""
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        """Return all ledger entries for the current run."""
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of the current run's ledger."""
        return self.ledger.verify_chain(self.run_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _environment(run_context: dict[str, Any]) -> str:
        descriptor = run_context.get("descriptor")
        return descriptor.name if descriptor is not None else ""

    def _report(
        self,
        run_context: dict[str, Any],
        outcomes: list[StepOutcome],
        *,
        fatal_error: str = "",
        fatal_stage: str = "",
    ) -> RunReport:
        apply_outputs = run_context.get("apply_outputs")
        report = RunReport(
            run_id=self.run_id,
            environment=self._environment(run_context),
            outcomes=outcomes,
            fatal_error=fatal_error,
            fatal_stage=fatal_stage,
            outputs=dict(apply_outputs.values) if apply_outputs is not None else {},
        )
        logger.info("Run %s finished: %s", self.run_id, report.status.value)
        return report
