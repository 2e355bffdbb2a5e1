"""State backend bootstrapper.

Ensures the durable state store (a versioned, encrypted bucket shared by
every environment of a project) and the per-environment lock table exist
before anything plans or applies. Every step is check-then-create and
tolerates losing a creation race to a concurrent run.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError, WaiterError

from stackpilot.cloud.aws import ensure_bucket, error_code, is_not_found
from stackpilot.core.naming import ResourceKind, resource_name, state_key
from stackpilot.models.environment import EnvironmentDescriptor
from stackpilot.models.outcomes import ConfigurationError, FatalStepError
from stackpilot.models.state import StateBackendHandle

logger = logging.getLogger(__name__)

LOCK_KEY_ATTRIBUTE = "LockID"


class BackendBootstrapError(FatalStepError):
    """Raised when the state store or lock table cannot be made usable."""


class StateBackendBootstrapper:
    """Creates (or confirms) the state bucket and lock table.

    Parameters
    ----------
    s3:
        boto3 S3 client.
    dynamodb:
        boto3 DynamoDB client.
    region:
        Region the clients are bound to; drives the bucket location
        constraint.
    """

    def __init__(self, s3: Any, dynamodb: Any, region: str) -> None:
        self._s3 = s3
        self._dynamodb = dynamodb
        self._region = region

    def ensure_backend(self, project_id: str, environment: str) -> StateBackendHandle:
        if not project_id:
            raise ConfigurationError("project_id is required to bootstrap the state backend")
        if not self._region:
            raise ConfigurationError("region is required to bootstrap the state backend")

        descriptor = EnvironmentDescriptor(name=environment, project_id=project_id)
        bucket = resource_name(descriptor, ResourceKind.STATE_BUCKET)
        table = resource_name(descriptor, ResourceKind.LOCK_TABLE)

        try:
            self._ensure_state_bucket(bucket)
            self._ensure_lock_table(table)
        except (ClientError, WaiterError) as exc:
            code = error_code(exc) if isinstance(exc, ClientError) else "Timeout"
            raise BackendBootstrapError(
                f"state backend for {project_id}/{environment} unusable: {code}: {exc}"
            ) from exc

        handle = StateBackendHandle(
            store_location=f"s3://{bucket}/{state_key(descriptor)}",
            lock_table_name=table,
            encrypted=True,
        )
        logger.info("State backend ready: %s (lock table %s)", handle.store_location, table)
        return handle

    # ------------------------------------------------------------------
    # Object store
    # ------------------------------------------------------------------

    def _ensure_state_bucket(self, bucket: str) -> None:
        ensure_bucket(self._s3, bucket, self._region)
        # Both puts are idempotent; applying them every run repairs drift.
        self._s3.put_bucket_versioning(
            Bucket=bucket, VersioningConfiguration={"Status": "Enabled"}
        )
        self._s3.put_bucket_encryption(
            Bucket=bucket,
            ServerSideEncryptionConfiguration={
                "Rules": [
                    {"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}
                ]
            },
        )

    # ------------------------------------------------------------------
    # Lock table
    # ------------------------------------------------------------------

    def _ensure_lock_table(self, table: str) -> None:
        try:
            self._dynamodb.describe_table(TableName=table)
            return
        except ClientError as exc:
            if not is_not_found(exc):
                raise

        try:
            self._dynamodb.create_table(
                TableName=table,
                AttributeDefinitions=[
                    {"AttributeName": LOCK_KEY_ATTRIBUTE, "AttributeType": "S"}
                ],
                KeySchema=[{"AttributeName": LOCK_KEY_ATTRIBUTE, "KeyType": "HASH"}],
                BillingMode="PAY_PER_REQUEST",
            )
            logger.info("Created lock table %s", table)
        except ClientError as exc:
            if error_code(exc) != "ResourceInUseException":
                raise
            logger.info("Lock table %s was created concurrently", table)

        self._dynamodb.get_waiter("table_exists").wait(TableName=table)
