"""Unit tests for the DeploymentOrchestrator.

Covers construction, stage subsets, the fatal/best-effort failure policy
and the ledger trail a run leaves behind.
"""

from __future__ import annotations

import pytest

from stackpilot.core.orchestrator import DeploymentOrchestrator, select_definitions
from stackpilot.models.environment import Trigger
from stackpilot.models.outcomes import RunStatus, Severity
from stackpilot.models.stages import StageState
from stackpilot.stages import APPLY_STAGES, PLAN_STAGES, STAGE_ORDER
from stackpilot.stages.s7_verify import VerifyStage

DEV = Trigger.manual("dev")


# ---------------------------------------------------------------------------
# Test: Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_run_id_auto_generated(self, make_orchestrator):
        assert make_orchestrator().run_id.startswith("sp-")

    def test_run_id_explicit(self, make_orchestrator):
        assert make_orchestrator(run_id="explicit-id").run_id == "explicit-id"

    def test_full_pipeline_by_default(self, make_orchestrator):
        assert make_orchestrator().graph.stage_ids == STAGE_ORDER


class TestSelectDefinitions:
    def test_subset_chained_in_order(self):
        definitions = select_definitions(APPLY_STAGES)
        assert [d.stage_id for d in definitions] == APPLY_STAGES
        assert definitions[0].prerequisites == []
        assert definitions[2].prerequisites == ["s1_backend"]
        assert definitions[3].best_effort is True

    def test_unknown_stage(self):
        with pytest.raises(KeyError, match="s9_party"):
            select_definitions(["s0_resolve", "s9_party"])


# ---------------------------------------------------------------------------
# Test: Runs
# ---------------------------------------------------------------------------


class TestRun:
    def test_successful_run_passes_every_stage(self, make_orchestrator):
        orchestrator = make_orchestrator()
        report = orchestrator.run(DEV)

        assert report.status == RunStatus.SUCCEEDED
        assert report.environment == "dev"
        assert report.outputs["entry_point_address"].startswith("https://")
        assert set(orchestrator.get_states().values()) == {StageState.PASSED}
        assert orchestrator.verify_chain()

    def test_fatal_error_blocks_downstream(self, make_orchestrator, environments_dir):
        (environments_dir / "dev" / "stack.toml").write_text(
            'project_id = "ragbot"\nregion = "eu-west-1"\n', encoding="utf-8"
        )
        orchestrator = make_orchestrator()
        report = orchestrator.run(DEV)

        assert report.status == RunStatus.FAILED
        assert report.fatal_stage == "s3_reconcile"
        assert report.fatal_error.startswith("ConfigurationError: lambda_role_arn")
        states = orchestrator.get_states()
        assert states["s2_build"] == StageState.PASSED
        assert states["s3_reconcile"] == StageState.FAILED
        for stage_id in ("s4_plan", "s5_apply", "s6_initialize", "s7_verify"):
            assert states[stage_id] == StageState.BLOCKED

    def test_missing_project_is_fatal_at_backend(self, make_orchestrator, cloud):
        report = make_orchestrator().run(Trigger.manual("staging"))
        assert report.fatal_stage == "s1_backend"
        assert "project_id" in report.fatal_error
        assert report.outcomes[0].severity == Severity.ADVISORY
        assert cloud.driver.mutations() == []

    def test_best_effort_failure_degrades(self, make_orchestrator, monkeypatch):
        def explode(self, run_context):
            raise RuntimeError("health check crashed")

        monkeypatch.setattr(VerifyStage, "execute", explode)
        orchestrator = make_orchestrator()
        report = orchestrator.run(DEV)

        assert report.status == RunStatus.DEGRADED
        assert report.succeeded
        assert orchestrator.get_states()["s7_verify"] == StageState.DEGRADED
        degraded = [o for o in report.outcomes if o.severity == Severity.DEGRADED]
        assert "health check crashed" in degraded[0].message

    def test_binding_error_fails_at_reconcile(self, make_orchestrator, cloud, monkeypatch):
        def denied(secret_id):
            raise RuntimeError("AccessDeniedException: not authorized to read " + secret_id)

        monkeypatch.setattr(cloud.secrets, "get_secret", denied)
        orchestrator = make_orchestrator()
        report = orchestrator.run(DEV)

        assert report.status == RunStatus.FAILED
        assert report.fatal_stage == "s3_reconcile"
        assert report.fatal_error.startswith("RuntimeError: AccessDeniedException")
        states = orchestrator.get_states()
        assert states["s3_reconcile"] == StageState.FAILED
        assert states["s4_plan"] == StageState.BLOCKED
        assert cloud.driver.mutations() == []

    def test_degraded_detail_recorded(self, make_orchestrator, cloud):
        cloud.backing_store.statuses = ["creating"]
        orchestrator = make_orchestrator()
        orchestrator.run(DEV)

        final = [
            e for e in orchestrator.get_run_entries()
            if e.stage_id == "s6_initialize" and e.state_transition.endswith("->degraded")
        ]
        assert len(final) == 1
        assert "did not become available" in final[0].detail

    def test_plan_subset_stops_after_plan(self, make_orchestrator, cloud):
        orchestrator = make_orchestrator(PLAN_STAGES)
        report = orchestrator.run(DEV)

        assert report.succeeded
        assert list(orchestrator.get_states()) == PLAN_STAGES
        assert cloud.driver.mutations() == []
        assert report.outputs == {}

    def test_ledger_records_environment(self, make_orchestrator):
        orchestrator = make_orchestrator(["s0_resolve"])
        orchestrator.run(DEV)
        entries = orchestrator.get_run_entries()
        assert [e.state_transition for e in entries] == ["not_started->running", "running->passed"]
        assert entries[-1].environment == "dev"


def test_default_settings_used_when_omitted(monkeypatch, settings):
    monkeypatch.setattr("stackpilot.core.orchestrator.config", settings)
    orchestrator = DeploymentOrchestrator()
    assert orchestrator.settings is settings
