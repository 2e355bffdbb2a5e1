"""Bounded fixed-delay retry, shared by the readiness wait and schema init."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """How often to try and what counts as success.

    ``success_predicate`` receives the operation's return value. An
    operation that raises counts as a failed attempt.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_attempts: int = Field(ge=1)
    fixed_delay: float = Field(default=0.0, ge=0.0)
    success_predicate: Callable[[Any], bool] = bool


class RetryResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    succeeded: bool
    attempts: int
    last_value: Any = None
    last_error: str = ""


def run_with_retry(
    policy: RetryPolicy,
    operation: Callable[[], Any],
    *,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult:
    """Call *operation* until *policy* says it succeeded or attempts run out.

    Never raises on its own account and never sleeps after the last
    attempt; the result reports how many attempts were made.
    """
    last_value: Any = None
    last_error = ""
    for attempt in range(1, policy.max_attempts + 1):
        try:
            last_value = operation()
            last_error = ""
        except Exception as exc:
            last_value = None
            last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("%s attempt %d/%d raised %s", label, attempt, policy.max_attempts, last_error)
        else:
            if policy.success_predicate(last_value):
                logger.info("%s succeeded on attempt %d/%d", label, attempt, policy.max_attempts)
                return RetryResult(succeeded=True, attempts=attempt, last_value=last_value)
            logger.info("%s attempt %d/%d not yet successful", label, attempt, policy.max_attempts)

        if attempt < policy.max_attempts:
            sleep(policy.fixed_delay)

    return RetryResult(
        succeeded=False,
        attempts=policy.max_attempts,
        last_value=last_value,
        last_error=last_error,
    )
