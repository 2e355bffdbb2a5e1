"""AWS implementations of the cloud collaborator Protocols.

Clients are created lazily and cached per (service, region, endpoint), all
with standard-mode retries. Errors surface as ``botocore`` ``ClientError``
and are inspected by their ``Error.Code``; the implementations translate the
codes the orchestration cares about (not found, already exists) and let
everything else propagate.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, WaiterError

from stackpilot.cloud.base import (
    CloudServices,
    InvocationResult,
    ResourceNotFoundError,
    ResourceOperationError,
    ResourceSnapshot,
)

logger = logging.getLogger(__name__)

_RETRY_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})

_clients: dict[tuple[str, str, str | None], Any] = {}
_clients_lock = threading.Lock()

# Error codes meaning "no such thing", per service.
_NOT_FOUND_CODES = frozenset(
    {
        "404",
        "NoSuchBucket",
        "NotFound",
        "ResourceNotFoundException",
        "DBInstanceNotFound",
        "DBInstanceNotFoundFault",
    }
)


def error_code(exc: ClientError) -> str:
    """Return the service error code carried by *exc* (``""`` if absent)."""
    return str(exc.response.get("Error", {}).get("Code", ""))


def is_not_found(exc: ClientError) -> bool:
    return error_code(exc) in _NOT_FOUND_CODES


def get_client(service: str, region: str, endpoint_url: str | None = None) -> Any:
    """Get (or create) the client singleton for *service* in *region*."""
    key = (service, region, endpoint_url)
    with _clients_lock:
        client = _clients.get(key)
        if client is None:
            client = boto3.client(
                service,
                region_name=region,
                endpoint_url=endpoint_url,
                config=_RETRY_CONFIG,
            )
            _clients[key] = client
    return client


def ensure_bucket(s3: Any, bucket: str, region: str) -> bool:
    """Create *bucket* unless it exists. Returns True when it was created.

    ``us-east-1`` rejects an explicit ``LocationConstraint``; every other
    region requires one. A concurrent creator winning the race is fine.
    """
    try:
        s3.head_bucket(Bucket=bucket)
        return False
    except ClientError as exc:
        if not is_not_found(exc):
            raise

    kwargs: dict[str, Any] = {"Bucket": bucket}
    if region != "us-east-1":
        kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        s3.create_bucket(**kwargs)
    except ClientError as exc:
        if error_code(exc) != "BucketAlreadyOwnedByYou":
            raise
        logger.info("Bucket %s was created concurrently", bucket)
        return False
    logger.info("Created bucket %s in %s", bucket, region)
    return True


def json_patch(before: dict[str, Any], after: dict[str, Any]) -> list[dict[str, Any]]:
    """RFC 6902 patch turning *before* into *after* at the top level."""
    ops: list[dict[str, Any]] = []
    for key in sorted(set(before) | set(after)):
        path = "/" + key.replace("~", "~0").replace("/", "~1")
        if key not in after:
            ops.append({"op": "remove", "path": path})
        elif key not in before:
            ops.append({"op": "add", "path": path, "value": after[key]})
        elif before[key] != after[key]:
            ops.append({"op": "replace", "path": path, "value": after[key]})
    return ops


class CloudControlDriver:
    """Drives opaque resource units through the Cloud Control API."""

    def __init__(
        self,
        client: Any,
        *,
        wait_delay: int = 5,
        wait_max_attempts: int = 120,
    ) -> None:
        self._client = client
        self._wait_config = {"Delay": wait_delay, "MaxAttempts": wait_max_attempts}

    def _await(self, event: dict[str, Any], what: str) -> dict[str, Any]:
        token = event.get("RequestToken")
        if not token or event.get("OperationStatus") == "SUCCESS":
            return event
        try:
            self._client.get_waiter("resource_request_success").wait(
                RequestToken=token, WaiterConfig=self._wait_config
            )
        except WaiterError as exc:
            status = self._client.get_resource_request_status(RequestToken=token)
            final = status.get("ProgressEvent", {})
            raise ResourceOperationError(
                f"{what} did not complete: {final.get('OperationStatus', 'UNKNOWN')} "
                f"{final.get('ErrorCode', '')} {final.get('StatusMessage', exc)}".strip()
            ) from exc
        status = self._client.get_resource_request_status(RequestToken=token)
        return status.get("ProgressEvent", event)

    def _read(self, type_name: str, identifier: str) -> ResourceSnapshot:
        response = self._client.get_resource(TypeName=type_name, Identifier=identifier)
        description = response.get("ResourceDescription", {})
        return ResourceSnapshot(
            external_identifier=description.get("Identifier", identifier),
            attributes=json.loads(description.get("Properties") or "{}"),
        )

    def create(
        self, type_name: str, identifier: str, properties: dict[str, Any]
    ) -> ResourceSnapshot:
        logger.info("Creating %s %s", type_name, identifier)
        try:
            response = self._client.create_resource(
                TypeName=type_name, DesiredState=json.dumps(properties)
            )
            event = self._await(response["ProgressEvent"], f"create {type_name} {identifier}")
            return self._read(type_name, event.get("Identifier") or identifier)
        except ClientError as exc:
            raise ResourceOperationError(
                f"create {type_name} {identifier} failed: {error_code(exc)}"
            ) from exc

    def update(
        self,
        type_name: str,
        external_identifier: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> ResourceSnapshot:
        patch = json_patch(before, after)
        if not patch:
            return self._read(type_name, external_identifier)
        logger.info(
            "Updating %s %s (%d patch operations)", type_name, external_identifier, len(patch)
        )
        try:
            response = self._client.update_resource(
                TypeName=type_name,
                Identifier=external_identifier,
                PatchDocument=json.dumps(patch),
            )
            self._await(response["ProgressEvent"], f"update {type_name} {external_identifier}")
            return self._read(type_name, external_identifier)
        except ClientError as exc:
            if is_not_found(exc):
                raise ResourceNotFoundError(f"{type_name} {external_identifier}") from exc
            raise ResourceOperationError(
                f"update {type_name} {external_identifier} failed: {error_code(exc)}"
            ) from exc

    def delete(self, type_name: str, external_identifier: str) -> None:
        logger.info("Deleting %s %s", type_name, external_identifier)
        try:
            response = self._client.delete_resource(
                TypeName=type_name, Identifier=external_identifier
            )
            self._await(response["ProgressEvent"], f"delete {type_name} {external_identifier}")
        except ClientError as exc:
            if is_not_found(exc):
                raise ResourceNotFoundError(f"{type_name} {external_identifier}") from exc
            raise ResourceOperationError(
                f"delete {type_name} {external_identifier} failed: {error_code(exc)}"
            ) from exc

    def lookup(self, type_name: str, identifier: str) -> ResourceSnapshot | None:
        try:
            return self._read(type_name, identifier)
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise


class SecretsManagerStore:
    """Secret store backed by AWS Secrets Manager (JSON ``SecretString``)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def get_secret(self, secret_id: str) -> dict[str, Any] | None:
        try:
            response = self._client.get_secret_value(SecretId=secret_id)
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise
        raw = response.get("SecretString") or "{}"
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Secret %s does not hold a JSON document", secret_id)
            return None
        return payload if isinstance(payload, dict) else None


class RdsBackingStore:
    """The PostgreSQL backing store as seen through the RDS API."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def _describe(self, identifier: str) -> dict[str, Any] | None:
        try:
            response = self._client.describe_db_instances(DBInstanceIdentifier=identifier)
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise
        instances = response.get("DBInstances", [])
        return instances[0] if instances else None

    def status(self, identifier: str) -> str | None:
        instance = self._describe(identifier)
        return instance.get("DBInstanceStatus") if instance else None

    def connection_facts(self, identifier: str) -> dict[str, Any]:
        instance = self._describe(identifier)
        if instance is None:
            raise ResourceNotFoundError(f"database instance {identifier} not found")
        endpoint = instance.get("Endpoint", {})
        return {
            "host": endpoint.get("Address", ""),
            "port": endpoint.get("Port", 5432),
            "dbname": instance.get("DBName", ""),
            "engine": instance.get("Engine", ""),
            "username": instance.get("MasterUsername", ""),
        }


class LambdaComputeService:
    """Compute units backed by AWS Lambda."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def invoke(self, function_name: str, payload: dict[str, Any]) -> InvocationResult:
        response = self._client.invoke(
            FunctionName=function_name,
            InvocationType="RequestResponse",
            Payload=json.dumps(payload).encode("utf-8"),
        )
        body = response.get("Payload")
        raw = body.read() if body is not None else b""
        try:
            decoded = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            decoded = raw.decode("utf-8", errors="replace")
        return InvocationResult(
            status_code=response.get("StatusCode", 200),
            function_error=response.get("FunctionError"),
            payload=decoded,
        )

    def get_environment(self, function_name: str) -> dict[str, str]:
        response = self._client.get_function_configuration(FunctionName=function_name)
        return dict(response.get("Environment", {}).get("Variables", {}))

    def update_environment(self, function_name: str, variables: dict[str, str]) -> None:
        self._client.update_function_configuration(
            FunctionName=function_name, Environment={"Variables": variables}
        )

    def update_code(self, function_name: str, bucket: str, key: str) -> None:
        self._client.update_function_code(
            FunctionName=function_name, S3Bucket=bucket, S3Key=key
        )


class S3CodeBucket:
    """Code bucket for packaged compute units."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def ensure_bucket(self, bucket: str, region: str) -> None:
        ensure_bucket(self._client, bucket, region)

    def upload(self, bucket: str, key: str, data: bytes) -> None:
        self._client.put_object(Bucket=bucket, Key=key, Body=data)


def aws_services(
    region: str,
    *,
    endpoint_url: str | None = None,
    wait_delay: int = 5,
    wait_max_attempts: int = 120,
) -> CloudServices:
    """Build the AWS collaborators for one region."""

    def client(service: str) -> Any:
        return get_client(service, region, endpoint_url)

    return CloudServices(
        driver=CloudControlDriver(
            client("cloudcontrol"),
            wait_delay=wait_delay,
            wait_max_attempts=wait_max_attempts,
        ),
        secrets=SecretsManagerStore(client("secretsmanager")),
        backing_store=RdsBackingStore(client("rds")),
        compute=LambdaComputeService(client("lambda")),
        code_bucket=S3CodeBucket(client("s3")),
        s3=client("s3"),
        dynamodb=client("dynamodb"),
    )
