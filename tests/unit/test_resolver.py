"""Tests for environment resolution and resource naming."""

from __future__ import annotations

from pathlib import Path

import pytest

from stackpilot.core.naming import ResourceKind, resource_name, state_key
from stackpilot.core.resolver import (
    branch_name,
    derive_flags,
    environment_for_branch,
    resolve_environment,
)
from stackpilot.models.environment import EnvironmentDescriptor, Trigger
from stackpilot.models.outcomes import Severity


class TestBranchMapping:
    @pytest.mark.parametrize(
        ("branch", "environment"),
        [
            ("main", "prod"),
            ("staging", "staging"),
            ("develop", "dev"),
            ("refs/heads/main", "prod"),
            ("feature/login", "dev"),
            ("", "dev"),
        ],
    )
    def test_branch_to_environment(self, branch: str, environment: str):
        assert environment_for_branch(branch) == environment

    def test_branch_name_strips_ref_prefix(self):
        assert branch_name("refs/heads/release/1.2") == "release/1.2"
        assert branch_name("refs/tags/v1") == "refs/tags/v1"


class TestFlags:
    def test_push_uses_defaults(self):
        flags = derive_flags(Trigger.push("main"), "prod")
        assert flags.reset_credential is False
        assert flags.wait_for_readiness is True
        assert flags.ingress_allowlist == "0.0.0.0/0"

    def test_lifecycle_rules_only_in_prod(self):
        assert derive_flags(Trigger.push("main"), "prod").lifecycle_rules_enabled is True
        assert derive_flags(Trigger.push("staging"), "staging").lifecycle_rules_enabled is False

    def test_manual_overrides(self):
        trigger = Trigger.manual(
            "staging",
            reset_credential=True,
            ingress_allowlist=" 10.0.0.0/16 ",
            wait_for_readiness=False,
        )
        flags = derive_flags(trigger, "staging")
        assert flags.reset_credential is True
        assert flags.wait_for_readiness is False
        assert flags.ingress_allowlist == "10.0.0.0/16"

    def test_push_cannot_carry_overrides(self):
        trigger = Trigger(kind="push", branch="main", reset_credential=True, wait_for_readiness=False)
        flags = derive_flags(trigger, "prod")
        assert flags.reset_credential is False
        assert flags.wait_for_readiness is True


class TestResolveEnvironment:
    def test_manual_environment_wins_over_branch(self, environments_dir: Path):
        trigger = Trigger(kind="manual", branch="main", environment="dev")
        descriptor, advisories = resolve_environment(trigger, environments_dir)
        assert descriptor.name == "dev"
        assert descriptor.project_id == "ragbot"
        assert descriptor.region == "eu-west-1"
        assert descriptor.setting("lambda_role_arn").endswith("ragbot-dev-lambda")
        assert advisories == []

    def test_missing_source_is_advisory(self, environments_dir: Path):
        descriptor, advisories = resolve_environment(Trigger.push("main"), environments_dir)
        assert descriptor.name == "prod"
        assert descriptor.project_id == ""
        assert [a.severity for a in advisories] == [Severity.ADVISORY]

    def test_unreadable_source_is_advisory(self, environments_dir: Path):
        (environments_dir / "staging").mkdir()
        (environments_dir / "staging" / "stack.toml").write_text("project_id = ", encoding="utf-8")
        descriptor, advisories = resolve_environment(Trigger.push("staging"), environments_dir)
        assert descriptor.project_id == ""
        assert "unreadable" in advisories[0].message


class TestNaming:
    def test_environment_scoped_names(self, dev_descriptor: EnvironmentDescriptor):
        assert resource_name(dev_descriptor, ResourceKind.DATABASE) == "ragbot-dev-postgres"
        assert resource_name(dev_descriptor, ResourceKind.LOCK_TABLE) == "ragbot-dev-deploy-state-lock"
        assert resource_name(dev_descriptor, ResourceKind.DB_SECRET) == "ragbot-dev-db-credentials"

    def test_state_bucket_is_shared_by_environments(self, dev_descriptor: EnvironmentDescriptor):
        prod = dev_descriptor.model_copy(update={"name": "prod"})
        assert resource_name(dev_descriptor, ResourceKind.STATE_BUCKET) == "ragbot-deploy-state"
        assert resource_name(prod, ResourceKind.STATE_BUCKET) == "ragbot-deploy-state"
        assert state_key(prod) == "prod/stack.state.json"

    def test_function_names(self, dev_descriptor: EnvironmentDescriptor):
        assert (
            resource_name(dev_descriptor, ResourceKind.FUNCTION, "db_init")
            == "ragbot-dev-db-init"
        )
        with pytest.raises(ValueError):
            resource_name(dev_descriptor, ResourceKind.FUNCTION)

    def test_project_id_required(self):
        with pytest.raises(ValueError):
            resource_name(EnvironmentDescriptor(name="dev"), ResourceKind.DATABASE)
