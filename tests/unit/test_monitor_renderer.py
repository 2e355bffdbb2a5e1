"""Unit tests for the RunRenderer."""

from __future__ import annotations

from datetime import datetime, timezone

from rich.console import Console
from rich.panel import Panel

from stackpilot.models.changes import ChangeAction, ChangeArtifact, ResourceChange
from stackpilot.models.outcomes import RunReport, RunStatus, StepOutcome
from stackpilot.models.stages import StageState
from stackpilot.monitor.projection import RunSnapshot, StageStatus
from stackpilot.monitor.renderer import (
    _ACTION_STYLES,
    _STATE_ICONS,
    _STATE_STYLES,
    _STATUS_BORDERS,
    RunRenderer,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _recording_renderer() -> tuple[RunRenderer, Console]:
    console = Console(record=True, width=140, force_terminal=False)
    return RunRenderer(console=console), console


def _snapshot(chain_valid: bool = True) -> RunSnapshot:
    return RunSnapshot(
        run_id="test-run-001",
        environment="dev",
        stages=[
            StageStatus(stage_id="s0_resolve", display_name="Resolve Environment", state=StageState.PASSED),
            StageStatus(
                stage_id="s6_initialize",
                display_name="Post-Apply Initialize",
                state=StageState.DEGRADED,
                detail="db [primary] slow",
            ),
        ],
        chain_valid=chain_valid,
        last_updated=datetime(2026, 2, 27, 12, 0, 0, tzinfo=timezone.utc),
    )


def _artifact(changes: list[ResourceChange]) -> ChangeArtifact:
    return ChangeArtifact(
        environment="dev",
        project_id="ragbot",
        state_lineage="",
        state_serial=0,
        config_hash="0" * 64,
        changes=changes,
    )


# ---------------------------------------------------------------------------
# Test: Style mappings
# ---------------------------------------------------------------------------


class TestMappings:
    def test_all_states_have_styles_and_icons(self):
        for state in StageState:
            assert state in _STATE_STYLES
            assert state in _STATE_ICONS

    def test_all_statuses_have_borders(self):
        for status in RunStatus:
            assert status in _STATUS_BORDERS

    def test_all_actions_have_styles(self):
        for action in ChangeAction:
            assert action in _ACTION_STYLES


# ---------------------------------------------------------------------------
# Test: Rendering
# ---------------------------------------------------------------------------


class TestSnapshot:
    def test_render_returns_panel(self):
        assert isinstance(RunRenderer().render_snapshot(_snapshot()), Panel)

    def test_print_includes_states_and_detail(self):
        renderer, console = _recording_renderer()
        renderer.print_snapshot(_snapshot())
        text = console.export_text()
        assert "Resolve Environment" in text
        assert "DEGRADED" in text
        assert "db [primary] slow" in text
        assert "2/2" in text
        assert "valid" in text

    def test_broken_chain(self):
        renderer, console = _recording_renderer()
        renderer.print_snapshot(_snapshot(chain_valid=False))
        assert "BROKEN" in console.export_text()


class TestReport:
    def test_failed_report(self):
        renderer, console = _recording_renderer()
        report = RunReport(
            run_id="sp-1",
            environment="dev",
            outcomes=[StepOutcome.success("bootstrap", "state backend ready")],
            fatal_error="ConfigurationError: lambda_role_arn [missing]",
            fatal_stage="s3_reconcile",
        )
        renderer.print_report(report)
        text = console.export_text()
        assert "dev: failed" in text
        assert "Aborted in s3_reconcile" in text
        assert "lambda_role_arn [missing]" in text

    def test_outputs_listed(self):
        renderer, console = _recording_renderer()
        renderer.print_report(
            RunReport(run_id="sp-2", environment="prod", outputs={"entry_point_address": "https://x"})
        )
        text = console.export_text()
        assert "prod: succeeded" in text
        assert "entry_point_address" in text
        assert "https://x" in text


class TestPlan:
    def test_noop_plan(self):
        renderer, console = _recording_renderer()
        renderer.print_plan(_artifact([]))
        text = console.export_text()
        assert "No changes" in text
        assert "0 to create, 0 to update, 0 to delete" in text

    def test_changes_listed(self):
        renderer, console = _recording_renderer()
        renderer.print_plan(
            _artifact(
                [
                    ResourceChange(
                        resource_key="user_pool",
                        action=ChangeAction.CREATE,
                        type_name="AWS::Cognito::UserPool",
                        identifier="ragbot-dev-user-pool",
                    )
                ]
            )
        )
        text = console.export_text()
        assert "user_pool" in text
        assert "AWS::Cognito::UserPool" in text
        assert "1 to create" in text


def test_chain_verification_messages():
    renderer, console = _recording_renderer()
    renderer.print_chain_verification("sp-1", True)
    renderer.print_chain_verification("sp-2", False)
    text = console.export_text()
    assert "sp-1 is valid" in text
    assert "sp-2 is BROKEN" in text
