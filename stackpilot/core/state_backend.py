"""Durable managed state plus the lock that serializes mutations.

Two backends share one interface:

- ``S3StateBackend`` keeps the state document in the state bucket and the
  lock as an item in the DynamoDB lock table (conditional put).
- ``LocalStateBackend`` keeps both on the filesystem (atomic replace for the
  document, ``O_EXCL`` create for the lock) for local runs and tests.

A missing state document reads as an empty ``StackState`` with no lineage.
"""

from __future__ import annotations

import abc
import getpass
import json
import logging
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError

from stackpilot.cloud.aws import error_code
from stackpilot.core.bootstrapper import LOCK_KEY_ATTRIBUTE
from stackpilot.models.outcomes import FatalStepError
from stackpilot.models.state import LockInfo, StackState, StateBackendHandle

logger = logging.getLogger(__name__)


class LockAcquisitionError(FatalStepError):
    """Raised when another holder owns the state lock."""


def _who() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


class StateBackend(abc.ABC):
    """Reads and writes ``StackState`` and guards it with a lock."""

    @property
    @abc.abstractmethod
    def lock_id(self) -> str:
        """Identity of the state document the lock protects."""
        ...

    @abc.abstractmethod
    def read_state(self) -> StackState: ...

    @abc.abstractmethod
    def write_state(self, state: StackState) -> None: ...

    @abc.abstractmethod
    def acquire_lock(self, info: LockInfo) -> None:
        """Take the lock or raise ``LockAcquisitionError``."""
        ...

    @abc.abstractmethod
    def release_lock(self, info: LockInfo) -> None: ...

    @contextmanager
    def lock(self, operation: str, run_id: str = "") -> Iterator[LockInfo]:
        """Hold the state lock for the duration of the block."""
        info = LockInfo(lock_id=self.lock_id, operation=operation, who=_who(), run_id=run_id)
        self.acquire_lock(info)
        logger.info("Acquired state lock %s for %s", info.lock_id, operation)
        try:
            yield info
        finally:
            self.release_lock(info)
            logger.info("Released state lock %s", info.lock_id)


class S3StateBackend(StateBackend):
    """State in S3, lock in DynamoDB."""

    def __init__(self, s3: Any, dynamodb: Any, handle: StateBackendHandle) -> None:
        location = handle.store_location.removeprefix("s3://")
        bucket, _, key = location.partition("/")
        if not bucket or not key:
            raise ValueError(f"Not an S3 state location: {handle.store_location}")
        self._s3 = s3
        self._dynamodb = dynamodb
        self._bucket = bucket
        self._key = key
        self._table = handle.lock_table_name

    @property
    def lock_id(self) -> str:
        return f"{self._bucket}/{self._key}"

    def read_state(self) -> StackState:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=self._key)
        except ClientError as exc:
            if error_code(exc) in ("NoSuchKey", "404"):
                return StackState()
            raise
        return StackState.model_validate_json(response["Body"].read())

    def write_state(self, state: StackState) -> None:
        self._s3.put_object(
            Bucket=self._bucket,
            Key=self._key,
            Body=state.model_dump_json(indent=2).encode("utf-8"),
            ContentType="application/json",
            ServerSideEncryption="AES256",
        )
        logger.debug("Wrote state serial %d to s3://%s/%s", state.serial, self._bucket, self._key)

    def acquire_lock(self, info: LockInfo) -> None:
        try:
            self._dynamodb.put_item(
                TableName=self._table,
                Item={
                    LOCK_KEY_ATTRIBUTE: {"S": info.lock_id},
                    "Info": {"S": info.model_dump_json()},
                },
                ConditionExpression="attribute_not_exists(LockID)",
            )
        except ClientError as exc:
            if error_code(exc) != "ConditionalCheckFailedException":
                raise LockAcquisitionError(
                    f"could not acquire lock {info.lock_id}: {error_code(exc)}"
                ) from exc
            raise LockAcquisitionError(
                f"state lock {info.lock_id} is held by {self._holder(info.lock_id)}"
            ) from exc

    def release_lock(self, info: LockInfo) -> None:
        self._dynamodb.delete_item(
            TableName=self._table,
            Key={LOCK_KEY_ATTRIBUTE: {"S": info.lock_id}},
        )

    def _holder(self, lock_id: str) -> str:
        try:
            response = self._dynamodb.get_item(
                TableName=self._table,
                Key={LOCK_KEY_ATTRIBUTE: {"S": lock_id}},
                ConsistentRead=True,
            )
        except ClientError:
            return "another run"
        raw = response.get("Item", {}).get("Info", {}).get("S")
        if not raw:
            return "another run"
        holder = LockInfo.model_validate_json(raw)
        return f"{holder.who} ({holder.operation}, run {holder.run_id or '?'})"


class LocalStateBackend(StateBackend):
    """State and lock as files under *root*/<environment>/."""

    def __init__(self, root: Path, environment: str) -> None:
        self._dir = Path(root) / environment
        self._dir.mkdir(parents=True, exist_ok=True)
        self._state_path = self._dir / "stack.state.json"
        self._lock_path = self._dir / "stack.lock"

    @property
    def lock_id(self) -> str:
        return str(self._state_path)

    @property
    def handle(self) -> StateBackendHandle:
        return StateBackendHandle(
            store_location=str(self._state_path),
            lock_table_name=str(self._lock_path),
            encrypted=False,
        )

    def read_state(self) -> StackState:
        if not self._state_path.exists():
            return StackState()
        return StackState.model_validate_json(self._state_path.read_text(encoding="utf-8"))

    def write_state(self, state: StackState) -> None:
        tmp = self._state_path.with_name(self._state_path.name + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self._state_path)

    def acquire_lock(self, info: LockInfo) -> None:
        try:
            fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as exc:
            raise LockAcquisitionError(
                f"state lock {info.lock_id} is held by {self._holder()}"
            ) from exc
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(info.model_dump_json())

    def release_lock(self, info: LockInfo) -> None:
        self._lock_path.unlink(missing_ok=True)

    def _holder(self) -> str:
        try:
            holder = json.loads(self._lock_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return "another run"
        return f"{holder.get('who', '?')} ({holder.get('operation', '?')}, run {holder.get('run_id') or '?'})"
