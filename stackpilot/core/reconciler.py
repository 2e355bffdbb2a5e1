"""Resource reconciliation: adopt what already exists, decide the database mode.

Adoption is advisory and creation is the safe default. The import pass
looks up each adoptable resource that is not yet tracked and records it as
``imported`` when found; a miss (or any failure) only means the plan will
propose creation.
"""

from __future__ import annotations

import logging
import secrets

from stackpilot.cloud.base import BackingStore, ResourceDriver, ResourceNotFoundError, SecretStore
from stackpilot.core.naming import ResourceKind, resource_name
from stackpilot.core.state_backend import LockAcquisitionError, StateBackend
from stackpilot.models.database import CreatedDatabase, DatabaseBinding, ImportedDatabase
from stackpilot.models.environment import EnvironmentDescriptor
from stackpilot.models.outcomes import ConfigurationError, StepOutcome
from stackpilot.models.resources import DesiredStack
from stackpilot.models.state import ManagedResourceRecord, ResourceMode

logger = logging.getLogger(__name__)

STEP = "reconcile"
DEFAULT_DB_USERNAME = "dbadmin"
DEFAULT_DB_NAME = "ragdb"


def generate_password() -> str:
    # token_urlsafe avoids the characters RDS rejects ('/', '@', '"', ' ').
    return secrets.token_urlsafe(24)


def resolve_database_binding(
    descriptor: EnvironmentDescriptor,
    secret_store: SecretStore,
    backing_store: BackingStore,
) -> DatabaseBinding:
    """Pick the database mode and gather what that mode needs.

    In ``created`` mode the credential already stored in the environment's
    secret is reused; a new one is generated only when none exists or the
    run asked for a reset. In ``imported`` mode the external instance and its
    credential secret are authoritative and nothing is generated.
    """
    secret_name = resource_name(descriptor, ResourceKind.DB_SECRET)
    dbname = descriptor.setting("database_name", DEFAULT_DB_NAME)

    if descriptor.setting("use_existing_database", False):
        identifier = descriptor.setting("existing_database_identifier")
        if not identifier:
            raise ConfigurationError(
                "use_existing_database is set but existing_database_identifier is missing"
            )
        try:
            facts = backing_store.connection_facts(identifier)
        except ResourceNotFoundError as exc:
            raise ConfigurationError(f"existing database {identifier} not found") from exc

        source = descriptor.setting("existing_database_secret_id", secret_name)
        stored = secret_store.get_secret(source) or {}
        if not stored.get("password"):
            raise ConfigurationError(
                f"no credential for existing database {identifier} in secret {source}"
            )
        logger.info("Binding existing database %s at %s", identifier, facts.get("host"))
        if descriptor.flags.reset_credential:
            logger.warning(
                "Credential reset ignored: the credential for existing database %s is owned by %s",
                identifier,
                source,
            )
        return ImportedDatabase(
            identifier=identifier,
            username=stored.get("username") or facts.get("username") or DEFAULT_DB_USERNAME,
            password=stored["password"],
            dbname=facts.get("dbname") or dbname,
            host=facts.get("host", ""),
            port=int(facts.get("port") or 5432),
        )

    identifier = resource_name(descriptor, ResourceKind.DATABASE)
    stored = secret_store.get_secret(secret_name) or {}
    username = stored.get("username") or descriptor.setting("database_username", DEFAULT_DB_USERNAME)
    password = stored.get("password")
    generated = False
    if descriptor.flags.reset_credential:
        logger.warning("Credential reset requested: generating a new database password")
        password, generated = generate_password(), True
    elif not password:
        logger.info("No stored credential in %s: generating one", secret_name)
        password, generated = generate_password(), True
    else:
        logger.info("Reusing database credential from %s", secret_name)

    return CreatedDatabase(
        identifier=identifier,
        username=username,
        password=password,
        dbname=dbname,
        credential_generated=generated,
    )


class ResourceReconciler:
    """Best-effort import pass over the adoptable resources of a stack.

    Parameters
    ----------
    driver:
        Resource driver used to look resources up by natural identifier.
    backend:
        State backend; imports are written under its lock.
    """

    def __init__(self, driver: ResourceDriver, backend: StateBackend, *, run_id: str = "") -> None:
        self._driver = driver
        self._backend = backend
        self._run_id = run_id

    def import_existing(self, desired: DesiredStack) -> list[StepOutcome]:
        """Adopt every adoptable resource that exists but is not tracked.

        Never raises: lock contention, lookup failures and write failures
        all come back as degraded outcomes.
        """
        candidates = desired.adoptable()
        if not candidates:
            return []
        try:
            with self._backend.lock("import", self._run_id):
                return self._import_locked(desired)
        except LockAcquisitionError as exc:
            logger.warning("Skipping import pass: %s", exc)
            return [StepOutcome.degraded(STEP, f"import pass skipped: {exc}")]

    def _import_locked(self, desired: DesiredStack) -> list[StepOutcome]:
        outcomes: list[StepOutcome] = []
        state = self._backend.read_state()

        for spec in desired.adoptable():
            if state.get(spec.key) is not None:
                logger.debug("%s already tracked, not importing", spec.key)
                continue
            try:
                snapshot = self._driver.lookup(spec.type_name, spec.identifier)
            except Exception as exc:
                logger.warning(
                    "Import lookup for %s (%s) failed: %s", spec.key, spec.identifier, exc
                )
                outcomes.append(
                    StepOutcome.degraded(
                        STEP,
                        f"import of {spec.key} failed, plan will propose creation",
                        resource_key=spec.key,
                        identifier=spec.identifier,
                        error=str(exc),
                    )
                )
                continue

            if snapshot is None:
                logger.info("%s (%s) does not exist yet; it will be created", spec.key, spec.identifier)
                continue

            # Recorded with the desired properties, minus whatever the lookup
            # cannot observe, so the next plan only writes those.
            adopted = {
                name: value
                for name, value in spec.properties.items()
                if name not in spec.write_on_adopt
            }
            record = ManagedResourceRecord(
                resource_key=spec.key,
                mode=ResourceMode.IMPORTED,
                external_identifier=snapshot.external_identifier,
                type_name=spec.type_name,
                properties=adopted,
                attributes=snapshot.attributes,
                depends_on=sorted(spec.dependencies()),
            )
            updated = state.initialized().with_record(record)
            try:
                self._backend.write_state(updated)
            except Exception as exc:
                logger.warning("Could not record import of %s: %s", spec.key, exc)
                outcomes.append(
                    StepOutcome.degraded(
                        STEP, f"import of {spec.key} not recorded", resource_key=spec.key, error=str(exc)
                    )
                )
                continue
            state = updated
            logger.info("Imported %s as %s", spec.key, snapshot.external_identifier)
            outcomes.append(
                StepOutcome.success(
                    STEP,
                    f"imported {spec.key}",
                    resource_key=spec.key,
                    external_identifier=snapshot.external_identifier,
                )
            )
        return outcomes
