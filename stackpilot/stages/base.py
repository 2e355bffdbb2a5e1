"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable**; it enforces the canonical
lifecycle ordering:

    validate_prerequisites -> compute_input_hash -> execute
        -> compute_output_hash -> record

Stages communicate only through the run context, the artifact store and
the state backend.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, final

from stackpilot.core.hasher import compute_input_hash, compute_output_hash
from stackpilot.models.outcomes import StepOutcome
from stackpilot.models.stages import SATISFIED_STATES, StageState

logger = logging.getLogger(__name__)


class StagePrerequisiteError(RuntimeError):
    """Raised when a stage's prerequisites are not satisfied."""


class StageExecutionError(RuntimeError):
    """Raised when a stage's execute() method fails.

    The original exception is chained as ``__cause__``; the orchestrator
    reads it to tell fatal failures from best-effort misses.
    """


class BaseStage(abc.ABC):
    """Abstract base for all deployment stages.

    Subclasses **must** implement:
        * ``stage_id``  (e.g. ``"s4_plan"``).
        * ``display_name``, shown by the status renderer.
        * ``execute(run_context)``, the stage's core logic. It returns a
          dict whose ``outcomes`` key lists the ``StepOutcome`` values the
          stage produced.

    Subclasses **must not** override ``run_stage()``.
    """

    @property
    @abc.abstractmethod
    def stage_id(self) -> str: ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str: ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the stage's core logic.

        Parameters
        ----------
        run_context:
            Mutable dict carrying run-wide state: ``run_id``, ``settings``,
            the artifact store, collaborators and prior stage products.
        """
        ...

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Returns the result dict produced by ``execute()``, augmented with
        ``_input_hash`` and ``_output_hash`` keys and a normalized
        ``outcomes`` list.
        """
        self.validate_prerequisites(run_context)

        input_hash = self._compute_input_hash(run_context)
        logger.debug("%s [%s] input_hash=%s", self.display_name, self.stage_id, input_hash)

        try:
            result = self.execute(run_context)
        except Exception as exc:
            logger.error("%s [%s] failed: %s", self.display_name, self.stage_id, exc)
            raise StageExecutionError(f"Stage {self.stage_id} failed: {exc}") from exc

        result.setdefault("outcomes", [])
        output_hash = self._compute_output_hash(result)
        logger.debug("%s [%s] output_hash=%s", self.display_name, self.stage_id, output_hash)

        self._record(run_context, result, input_hash, output_hash)
        result["_input_hash"] = input_hash
        result["_output_hash"] = output_hash
        return result

    # ------------------------------------------------------------------
    # Lifecycle helpers (not overridable)
    # ------------------------------------------------------------------

    @final
    def validate_prerequisites(self, run_context: dict[str, Any]) -> None:
        """Ensure all prerequisite stages are PASSED or DEGRADED.

        Reads ``stage_states`` (``stage_id -> StageState``) and
        ``stage_definitions`` (``stage_id -> {"prerequisites": [...]}``)
        from *run_context*.
        """
        stage_states: dict[str, StageState] = run_context.get("stage_states", {})
        prerequisites: list[str] = (
            run_context.get("stage_definitions", {}).get(self.stage_id, {}).get("prerequisites", [])
        )

        blocking = [
            f"{prereq_id} is {stage_states.get(prereq_id, StageState.NOT_STARTED).value}"
            for prereq_id in prerequisites
            if stage_states.get(prereq_id, StageState.NOT_STARTED) not in SATISFIED_STATES
        ]
        if blocking:
            raise StagePrerequisiteError(
                f"Cannot run {self.stage_id}: prerequisites not met: " + "; ".join(blocking)
            )

    @final
    def _compute_input_hash(self, run_context: dict[str, Any]) -> str:
        inputs: dict[str, Any] = {
            "run_id": run_context.get("run_id", ""),
            "prior_output_hashes": {
                sid: ctx.get("_output_hash", "")
                for sid, ctx in run_context.get("stage_results", {}).items()
            },
        }
        return compute_input_hash(self.stage_id, inputs)

    @final
    def _compute_output_hash(self, result: dict[str, Any]) -> str:
        hashable = {k: v for k, v in result.items() if not k.startswith("_") and k != "outcomes"}
        hashable["outcomes"] = [
            o.model_dump(mode="json") if isinstance(o, StepOutcome) else o
            for o in result.get("outcomes", [])
        ]
        return compute_output_hash(self.stage_id, hashable)

    @final
    def _record(
        self,
        run_context: dict[str, Any],
        result: dict[str, Any],
        input_hash: str,
        output_hash: str,
    ) -> None:
        run_context.setdefault("stage_results", {})[self.stage_id] = {
            "_input_hash": input_hash,
            "_output_hash": output_hash,
        }
        logger.info(
            "%s [%s] done: input=%s output=%s",
            self.display_name,
            self.stage_id,
            input_hash[:12],
            output_hash[:12],
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"
