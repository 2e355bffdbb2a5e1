"""Tests for the desired stack composition."""

from __future__ import annotations

import pytest

from stackpilot.core.stack import (
    ALL_UNITS,
    CREDENTIAL_ENV_KEY,
    CREDENTIAL_UNITS,
    CREDENTIALS_KEY,
    DATABASE_KEY,
    build_desired_stack,
    secret_payload,
    unit_key,
)
from stackpilot.models.artifacts import BuildArtifact
from stackpilot.models.database import CreatedDatabase, ImportedDatabase
from stackpilot.models.environment import EnvironmentDescriptor, EnvironmentFlags
from stackpilot.models.outcomes import ConfigurationError
from stackpilot.models.resources import ref


def _builds() -> dict[str, BuildArtifact]:
    return {
        unit: BuildArtifact(unit=unit, content_address=f"sha256:{i:064x}", size_bytes=10)
        for i, unit in enumerate(ALL_UNITS)
    }


@pytest.fixture
def created() -> CreatedDatabase:
    return CreatedDatabase(
        identifier="ragbot-dev-postgres", username="dbadmin", password="pw", dbname="ragdb"
    )


@pytest.fixture
def imported() -> ImportedDatabase:
    return ImportedDatabase(
        identifier="shared-db",
        username="app",
        password="external-pw",
        dbname="shared",
        host="shared.db.example.com",
    )


class TestDesiredStack:
    def test_created_mode_includes_database(self, dev_descriptor, created):
        stack = build_desired_stack(dev_descriptor, created, _builds())
        specs = stack.by_key()
        assert DATABASE_KEY in specs
        assert specs[DATABASE_KEY].properties["MasterUserPassword"] == "pw"
        assert len(stack.outputs) == 3

    def test_imported_mode_has_no_database(self, dev_descriptor, imported):
        specs = build_desired_stack(dev_descriptor, imported, _builds()).by_key()
        assert DATABASE_KEY not in specs
        assert CREDENTIALS_KEY in specs

    def test_credentials_secret_is_adoptable(self, dev_descriptor, imported):
        secret = build_desired_stack(dev_descriptor, imported, _builds()).by_key()[CREDENTIALS_KEY]
        assert secret.adoptable
        assert secret.write_on_adopt == ["SecretString"]

    def test_credential_units_reference_secret(self, dev_descriptor, created):
        specs = build_desired_stack(dev_descriptor, created, _builds()).by_key()
        for unit in ALL_UNITS:
            variables = specs[unit_key(unit)].properties["Environment"]["Variables"]
            if unit in CREDENTIAL_UNITS:
                assert variables[CREDENTIAL_ENV_KEY] == ref(CREDENTIALS_KEY, "Id")
            else:
                assert CREDENTIAL_ENV_KEY not in variables

    def test_unmanaged_units_ignore_code(self, dev_descriptor, created):
        specs = build_desired_stack(dev_descriptor, created, _builds()).by_key()
        assert specs[unit_key("db_init")].ignore_changes == ["Code"]
        assert specs[unit_key("query_processor")].ignore_changes == []

    def test_function_code_points_at_artifact(self, dev_descriptor, created):
        builds = _builds()
        specs = build_desired_stack(dev_descriptor, created, builds).by_key()
        code = specs[unit_key("query_processor")].properties["Code"]
        assert code["S3Bucket"] == "ragbot-dev-lambda-code"
        assert code["S3Key"] == builds["query_processor"].object_key

    def test_lifecycle_rules_follow_flags(self, dev_descriptor, created):
        prod = dev_descriptor.model_copy(
            update={"name": "prod", "flags": EnvironmentFlags(lifecycle_rules_enabled=True)}
        )
        dev_bucket = build_desired_stack(dev_descriptor, created, _builds()).by_key()["documents_bucket"]
        prod_bucket = build_desired_stack(prod, created, _builds()).by_key()["documents_bucket"]
        assert "LifecycleConfiguration" not in dev_bucket.properties
        assert "LifecycleConfiguration" in prod_bucket.properties

    def test_ingress_allowlist_applied(self, dev_descriptor, created):
        restricted = dev_descriptor.model_copy(
            update={"flags": EnvironmentFlags(ingress_allowlist="10.1.0.0/16")}
        )
        group = build_desired_stack(restricted, created, _builds()).by_key()["bastion_sg"]
        assert group.properties["SecurityGroupIngress"][0]["CidrIp"] == "10.1.0.0/16"

    def test_missing_role_is_configuration_error(self, created):
        descriptor = EnvironmentDescriptor(name="dev", project_id="ragbot", region="eu-west-1")
        with pytest.raises(ConfigurationError, match="lambda_role_arn"):
            build_desired_stack(descriptor, created, _builds())

    def test_missing_build_is_configuration_error(self, dev_descriptor, created):
        builds = _builds()
        del builds["auth_handler"]
        with pytest.raises(ConfigurationError, match="auth_handler"):
            build_desired_stack(dev_descriptor, created, builds)


class TestSecretPayload:
    def test_created_host_is_reference(self, created):
        assert secret_payload(created)["host"] == ref(DATABASE_KEY, "Endpoint.Address")

    def test_imported_host_is_literal(self, imported):
        payload = secret_payload(imported)
        assert payload["host"] == "shared.db.example.com"
        assert payload["password"] == "external-pw"
