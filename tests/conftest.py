"""Shared test fixtures for stackpilot.

The fakes below share one in-memory "cloud": the secret store reads the
secrets the driver created, the compute service reads the functions the
driver created, so a full run can be observed end to end.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from stackpilot.cloud.base import (
    CloudServices,
    InvocationResult,
    ResourceNotFoundError,
    ResourceOperationError,
    ResourceSnapshot,
)
from stackpilot.config import Settings
from stackpilot.core.artifact_store import ContentAddressedStore
from stackpilot.core.orchestrator import DeploymentOrchestrator
from stackpilot.core.prerequisite_graph import PrerequisiteGraph
from stackpilot.core.run_ledger import RunLedger
from stackpilot.core.stack import ALL_UNITS
from stackpilot.core.stage_machine import StageMachine
from stackpilot.core.state_backend import LocalStateBackend
from stackpilot.models.environment import EnvironmentDescriptor, EnvironmentFlags
from stackpilot.models.stages import DEFAULT_STAGE_DEFINITIONS

DEV_STACK_TOML = """\
project_id = "ragbot"
region = "eu-west-1"
lambda_role_arn = "arn:aws:iam::123456789012:role/ragbot-dev-lambda"
"""


# ---------------------------------------------------------------------------
# Fake cloud
# ---------------------------------------------------------------------------


class FakeDriver:
    """In-memory resource driver keyed by external identifier."""

    def __init__(self) -> None:
        self.resources: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.fail_on: set[str] = set()
        self.lookup_errors: set[str] = set()

    @staticmethod
    def attributes_for(type_name: str, identifier: str) -> dict[str, Any]:
        arn = f"arn:fake:{type_name.split('::')[1].lower()}:{identifier}"
        attributes: dict[str, Any] = {"Id": identifier, "Arn": arn}
        if type_name == "AWS::EC2::SecurityGroup":
            attributes["GroupId"] = f"sg-{identifier}"
        elif type_name == "AWS::RDS::DBInstance":
            attributes["Endpoint"] = {"Address": f"{identifier}.db.example.com", "Port": "5432"}
        elif type_name == "AWS::SecretsManager::Secret":
            attributes["Id"] = arn
        elif type_name == "AWS::Cognito::UserPool":
            attributes["UserPoolId"] = f"pool-{identifier}"
        elif type_name == "AWS::Cognito::UserPoolClient":
            attributes["ClientId"] = f"client-{identifier}"
        elif type_name == "AWS::ApiGatewayV2::Api":
            attributes["ApiEndpoint"] = f"https://{identifier}.execute-api.example.com"
        return attributes

    def seed(self, type_name: str, identifier: str, properties: dict[str, Any] | None = None) -> None:
        """Pretend *identifier* already exists outside managed state."""
        self.resources[identifier] = {
            "type_name": type_name,
            "properties": properties or {},
            "attributes": self.attributes_for(type_name, identifier),
        }

    def create(self, type_name: str, identifier: str, properties: dict[str, Any]) -> ResourceSnapshot:
        self.calls.append(("create", type_name, identifier))
        if identifier in self.fail_on:
            raise ResourceOperationError(f"create of {identifier} failed")
        if identifier in self.resources:
            raise ResourceOperationError(f"create {type_name} {identifier} failed: AlreadyExists")
        self.seed(type_name, identifier, properties)
        return ResourceSnapshot(
            external_identifier=identifier, attributes=self.resources[identifier]["attributes"]
        )

    def update(
        self,
        type_name: str,
        external_identifier: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> ResourceSnapshot:
        self.calls.append(("update", type_name, external_identifier))
        if external_identifier not in self.resources:
            raise ResourceNotFoundError(external_identifier)
        self.resources[external_identifier]["properties"] = after
        return ResourceSnapshot(
            external_identifier=external_identifier,
            attributes=self.resources[external_identifier]["attributes"],
        )

    def delete(self, type_name: str, external_identifier: str) -> None:
        self.calls.append(("delete", type_name, external_identifier))
        if self.resources.pop(external_identifier, None) is None:
            raise ResourceNotFoundError(external_identifier)

    def lookup(self, type_name: str, identifier: str) -> ResourceSnapshot | None:
        if identifier in self.lookup_errors:
            raise RuntimeError(f"lookup of {identifier} throttled")
        resource = self.resources.get(identifier)
        if resource is None or resource["type_name"] != type_name:
            return None
        return ResourceSnapshot(external_identifier=identifier, attributes=resource["attributes"])

    def properties(self, identifier: str) -> dict[str, Any]:
        return self.resources[identifier]["properties"]

    def mutations(self) -> list[tuple[str, str, str]]:
        return list(self.calls)


class FakeSecretStore:
    """Reads the secrets the driver created (plus any seeded ones)."""

    def __init__(self, driver: FakeDriver) -> None:
        self._driver = driver
        self.external: dict[str, dict[str, Any]] = {}

    def get_secret(self, secret_id: str) -> dict[str, Any] | None:
        if secret_id in self.external:
            return self.external[secret_id]
        resource = self._driver.resources.get(secret_id)
        if resource is None or resource["type_name"] != "AWS::SecretsManager::Secret":
            return None
        return json.loads(resource["properties"]["SecretString"])


class FakeBackingStore:
    """Database whose status walks through a scripted sequence."""

    def __init__(self, statuses: list[str | None] | None = None) -> None:
        self.statuses = list(statuses) if statuses is not None else ["available"]
        self.status_calls = 0
        self.facts: dict[str, dict[str, Any]] = {}

    def status(self, identifier: str) -> str | None:
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        return self.statuses[index]

    def connection_facts(self, identifier: str) -> dict[str, Any]:
        if identifier not in self.facts:
            raise ResourceNotFoundError(identifier)
        return self.facts[identifier]


class FakeCompute:
    """Compute units backed by the functions the driver created."""

    def __init__(self, driver: FakeDriver) -> None:
        self._driver = driver
        self.invocations: list[tuple[str, dict[str, Any]]] = []
        self.results: dict[str, list[InvocationResult | Exception]] = {}
        self.env_updates: dict[str, dict[str, str]] = {}
        self.code_updates: list[tuple[str, str, str]] = []
        self.broken: set[str] = set()

    def invoke(self, function_name: str, payload: dict[str, Any]) -> InvocationResult:
        self.invocations.append((function_name, payload))
        scripted = self.results.get(function_name)
        if scripted:
            result = scripted.pop(0) if len(scripted) > 1 else scripted[0]
            if isinstance(result, Exception):
                raise result
            return result
        return InvocationResult(payload={"ok": True})

    def get_environment(self, function_name: str) -> dict[str, str]:
        if function_name in self.broken:
            raise RuntimeError(f"{function_name} unreachable")
        properties = self._driver.properties(function_name)
        return dict(properties.get("Environment", {}).get("Variables", {}))

    def update_environment(self, function_name: str, variables: dict[str, str]) -> None:
        self.env_updates[function_name] = dict(variables)

    def update_code(self, function_name: str, bucket: str, key: str) -> None:
        if function_name in self.broken:
            raise RuntimeError(f"{function_name} unreachable")
        self.code_updates.append((function_name, bucket, key))


class FakeCodeBucket:
    def __init__(self) -> None:
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], bytes] = {}

    def ensure_bucket(self, bucket: str, region: str) -> None:
        self.buckets.add(bucket)

    def upload(self, bucket: str, key: str, data: bytes) -> None:
        self.objects[(bucket, key)] = data


class FakeCloud:
    """Bundle of fakes plus the factory the orchestrator expects."""

    def __init__(self) -> None:
        self.driver = FakeDriver()
        self.secrets = FakeSecretStore(self.driver)
        self.backing_store = FakeBackingStore()
        self.compute = FakeCompute(self.driver)
        self.code_bucket = FakeCodeBucket()

    def services(self) -> CloudServices:
        return CloudServices(
            driver=self.driver,
            secrets=self.secrets,
            backing_store=self.backing_store,
            compute=self.compute,
            code_bucket=self.code_bucket,
        )

    def factory(self, descriptor: EnvironmentDescriptor) -> CloudServices:
        return self.services()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def graph() -> PrerequisiteGraph:
    """Provide a PrerequisiteGraph with the default deployment stages."""
    return PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: PrerequisiteGraph) -> StageMachine:
    """Provide a StageMachine wired to test ledger and graph."""
    return StageMachine(ledger, graph)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "sp-test-run-001"


@pytest.fixture
def state_backend(tmp_dir: Path) -> LocalStateBackend:
    return LocalStateBackend(tmp_dir / "state", "dev")


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def unit_sources(tmp_dir: Path) -> Path:
    """A source tree with one trivial package per compute unit."""
    root = tmp_dir / "src"
    for unit in ALL_UNITS:
        unit_dir = root / unit
        unit_dir.mkdir(parents=True)
        (unit_dir / "lambda_function.py").write_text(
            f"def lambda_handler(event, context):\n    return {{'unit': '{unit}'}}\n",
            encoding="utf-8",
        )
    return root


@pytest.fixture
def environments_dir(tmp_dir: Path) -> Path:
    root = tmp_dir / "environments"
    (root / "dev").mkdir(parents=True)
    (root / "dev" / "stack.toml").write_text(DEV_STACK_TOML, encoding="utf-8")
    return root


@pytest.fixture
def settings(tmp_dir: Path, unit_sources: Path, environments_dir: Path) -> Settings:
    """Settings with local state, temp paths and short bounded waits."""
    return Settings(
        state_backend="local",
        local_state_path=tmp_dir / "state",
        artifact_store_path=tmp_dir / "artifacts",
        ledger_path=tmp_dir / "ledger.db",
        environments_path=environments_dir,
        source_path=unit_sources,
        outputs_file=tmp_dir / "env_vars.env",
        readiness_max_attempts=3,
        readiness_delay_seconds=10.0,
        init_max_attempts=2,
        init_delay_seconds=30.0,
        build_workers=2,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Records every sleep a bounded wait asked for."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable[[float], None]:
    return sleeps.append


@pytest.fixture
def dev_descriptor() -> EnvironmentDescriptor:
    return EnvironmentDescriptor(
        name="dev",
        project_id="ragbot",
        region="eu-west-1",
        flags=EnvironmentFlags(),
        settings={"lambda_role_arn": "arn:aws:iam::123456789012:role/ragbot-dev-lambda"},
    )


@pytest.fixture
def make_orchestrator(
    settings: Settings, cloud: FakeCloud, fake_sleep: Callable[[float], None]
) -> Callable[..., DeploymentOrchestrator]:
    """Build orchestrators wired to the fake cloud and the recording sleep."""

    def make(stage_ids: list[str] | None = None, **kwargs: Any) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            settings,
            services_factory=cloud.factory,
            stage_ids=stage_ids,
            sleep=fake_sleep,
            **kwargs,
        )

    return make
