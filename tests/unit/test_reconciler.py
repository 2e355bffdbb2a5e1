"""Tests for the import pass and database mode resolution."""

from __future__ import annotations

import pytest

from stackpilot.core.reconciler import ResourceReconciler, resolve_database_binding
from stackpilot.core.state_backend import LocalStateBackend
from stackpilot.models.database import CreatedDatabase, ImportedDatabase
from stackpilot.models.environment import EnvironmentDescriptor, EnvironmentFlags
from stackpilot.models.outcomes import ConfigurationError, Severity
from stackpilot.models.resources import DesiredStack, ResourceSpec
from stackpilot.models.state import ManagedResourceRecord, ResourceMode, StackState

BUCKET = ResourceSpec(
    key="documents_bucket",
    type_name="AWS::S3::Bucket",
    identifier="ragbot-dev-documents",
    properties={"BucketName": "ragbot-dev-documents"},
    adoptable=True,
)
POOL = ResourceSpec(
    key="user_pool",
    type_name="AWS::Cognito::UserPool",
    identifier="ragbot-dev-user-pool",
    properties={"UserPoolName": "ragbot-dev-user-pool"},
)


class TestImportPass:
    def test_existing_resource_is_imported(self, cloud, state_backend: LocalStateBackend):
        cloud.driver.seed(BUCKET.type_name, BUCKET.identifier)
        outcomes = ResourceReconciler(cloud.driver, state_backend).import_existing(
            DesiredStack(resources=[BUCKET, POOL])
        )

        assert [o.severity for o in outcomes] == [Severity.OK]
        record = state_backend.read_state().get("documents_bucket")
        assert record.mode == ResourceMode.IMPORTED
        assert record.properties == BUCKET.properties
        assert record.attributes["Arn"] == "arn:fake:s3:ragbot-dev-documents"

    def test_unobservable_properties_left_for_plan(self, cloud, state_backend):
        secret = ResourceSpec(
            key="db_credentials",
            type_name="AWS::SecretsManager::Secret",
            identifier="ragbot-dev-db-credentials",
            properties={"Name": "ragbot-dev-db-credentials", "SecretString": "{}"},
            adoptable=True,
            write_on_adopt=["SecretString"],
        )
        cloud.driver.seed(secret.type_name, secret.identifier)
        ResourceReconciler(cloud.driver, state_backend).import_existing(
            DesiredStack(resources=[secret])
        )
        record = state_backend.read_state().get("db_credentials")
        assert record.properties == {"Name": "ragbot-dev-db-credentials"}

    def test_missing_resource_is_left_for_creation(self, cloud, state_backend):
        outcomes = ResourceReconciler(cloud.driver, state_backend).import_existing(
            DesiredStack(resources=[BUCKET])
        )
        assert outcomes == []
        assert state_backend.read_state().resources == {}

    def test_non_adoptable_resources_are_never_looked_up(self, cloud, state_backend):
        cloud.driver.seed(POOL.type_name, POOL.identifier)
        ResourceReconciler(cloud.driver, state_backend).import_existing(DesiredStack(resources=[POOL]))
        assert state_backend.read_state().get("user_pool") is None

    def test_tracked_resources_are_not_reimported(self, cloud, state_backend):
        cloud.driver.seed(BUCKET.type_name, BUCKET.identifier)
        existing = ManagedResourceRecord(
            resource_key="documents_bucket",
            mode=ResourceMode.CREATED,
            external_identifier=BUCKET.identifier,
            type_name=BUCKET.type_name,
        )
        state_backend.write_state(StackState().initialized().with_record(existing))

        outcomes = ResourceReconciler(cloud.driver, state_backend).import_existing(
            DesiredStack(resources=[BUCKET])
        )
        assert outcomes == []
        assert state_backend.read_state().get("documents_bucket").mode == ResourceMode.CREATED

    def test_lookup_failure_is_degraded(self, cloud, state_backend):
        cloud.driver.lookup_errors.add(BUCKET.identifier)
        outcomes = ResourceReconciler(cloud.driver, state_backend).import_existing(
            DesiredStack(resources=[BUCKET])
        )
        assert [o.severity for o in outcomes] == [Severity.DEGRADED]
        assert "throttled" in outcomes[0].context["error"]
        assert state_backend.read_state().resources == {}

    def test_held_lock_skips_pass(self, cloud, tmp_dir):
        holder = LocalStateBackend(tmp_dir / "state", "dev")
        backend = LocalStateBackend(tmp_dir / "state", "dev")
        cloud.driver.seed(BUCKET.type_name, BUCKET.identifier)
        with holder.lock("apply", "other-run"):
            outcomes = ResourceReconciler(cloud.driver, backend).import_existing(
                DesiredStack(resources=[BUCKET])
            )
        assert outcomes[0].severity == Severity.DEGRADED
        assert "skipped" in outcomes[0].message


class TestDatabaseBinding:
    SECRET = "ragbot-dev-db-credentials"

    def test_first_run_generates_credential(self, cloud, dev_descriptor):
        binding = resolve_database_binding(dev_descriptor, cloud.secrets, cloud.backing_store)
        assert isinstance(binding, CreatedDatabase)
        assert binding.credential_generated is True
        assert binding.identifier == "ragbot-dev-postgres"
        assert len(binding.password) >= 24

    def test_stored_credential_is_reused(self, cloud, dev_descriptor):
        cloud.secrets.external[self.SECRET] = {"username": "keeper", "password": "stored-pw"}
        binding = resolve_database_binding(dev_descriptor, cloud.secrets, cloud.backing_store)
        assert binding.password == "stored-pw"
        assert binding.username == "keeper"
        assert binding.credential_generated is False

    def test_reset_generates_new_credential(self, cloud, dev_descriptor):
        cloud.secrets.external[self.SECRET] = {"username": "keeper", "password": "stored-pw"}
        reset = dev_descriptor.model_copy(update={"flags": EnvironmentFlags(reset_credential=True)})
        binding = resolve_database_binding(reset, cloud.secrets, cloud.backing_store)
        assert binding.password != "stored-pw"
        assert binding.username == "keeper"
        assert binding.credential_generated is True

    def _existing(self, **extra) -> EnvironmentDescriptor:
        return EnvironmentDescriptor(
            name="dev",
            project_id="ragbot",
            region="eu-west-1",
            settings={
                "use_existing_database": True,
                "existing_database_identifier": "shared-db",
                **extra,
            },
        )

    def test_existing_database_is_authoritative(self, cloud):
        cloud.backing_store.facts["shared-db"] = {
            "host": "shared.db.example.com",
            "port": 6432,
            "dbname": "shared",
            "username": "master",
        }
        cloud.secrets.external["shared-secret"] = {"password": "external-pw"}
        binding = resolve_database_binding(
            self._existing(existing_database_secret_id="shared-secret"),
            cloud.secrets,
            cloud.backing_store,
        )
        assert isinstance(binding, ImportedDatabase)
        assert binding.host == "shared.db.example.com"
        assert binding.port == 6432
        assert binding.username == "master"
        assert binding.password == "external-pw"

    def test_existing_database_without_credential(self, cloud):
        cloud.backing_store.facts["shared-db"] = {"host": "h"}
        with pytest.raises(ConfigurationError, match="no credential"):
            resolve_database_binding(self._existing(), cloud.secrets, cloud.backing_store)

    def test_existing_database_missing(self, cloud):
        with pytest.raises(ConfigurationError, match="not found"):
            resolve_database_binding(self._existing(), cloud.secrets, cloud.backing_store)

    def test_existing_database_needs_identifier(self, cloud):
        descriptor = EnvironmentDescriptor(
            name="dev", project_id="ragbot", settings={"use_existing_database": True}
        )
        with pytest.raises(ConfigurationError, match="existing_database_identifier"):
            resolve_database_binding(descriptor, cloud.secrets, cloud.backing_store)

    def test_existing_database_ignores_reset(self, cloud, caplog):
        cloud.backing_store.facts["shared-db"] = {"host": "h"}
        cloud.secrets.external["ragbot-dev-db-credentials"] = {"password": "external-pw"}
        descriptor = self._existing().model_copy(
            update={"flags": EnvironmentFlags(reset_credential=True)}
        )
        with caplog.at_level("WARNING", logger="stackpilot.core.reconciler"):
            binding = resolve_database_binding(descriptor, cloud.secrets, cloud.backing_store)
        assert binding.password == "external-pw"
        assert "Credential reset ignored" in caplog.text
