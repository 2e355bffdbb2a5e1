"""Tests for the bounded fixed-delay retry."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stackpilot.core.retry import RetryPolicy, run_with_retry


def test_first_attempt_success_never_sleeps(sleeps, fake_sleep):
    result = run_with_retry(RetryPolicy(max_attempts=3, fixed_delay=5), lambda: True, sleep=fake_sleep)
    assert result.succeeded
    assert result.attempts == 1
    assert sleeps == []


def test_exhaustion_sleeps_between_attempts_only(sleeps, fake_sleep):
    result = run_with_retry(RetryPolicy(max_attempts=4, fixed_delay=2.5), lambda: False, sleep=fake_sleep)
    assert not result.succeeded
    assert result.attempts == 4
    assert sleeps == [2.5, 2.5, 2.5]


def test_exceptions_count_as_attempts(fake_sleep):
    calls = iter([RuntimeError("down"), "ready"])

    def operation():
        value = next(calls)
        if isinstance(value, Exception):
            raise value
        return value

    result = run_with_retry(
        RetryPolicy(max_attempts=3, success_predicate=lambda v: v == "ready"),
        operation,
        sleep=fake_sleep,
    )
    assert result.succeeded
    assert result.attempts == 2
    assert result.last_value == "ready"


def test_last_error_reported(fake_sleep):
    def operation():
        raise ConnectionError("refused")

    result = run_with_retry(RetryPolicy(max_attempts=2), operation, sleep=fake_sleep)
    assert result.last_error == "ConnectionError: refused"
    assert result.last_value is None


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"max_attempts": 1, "fixed_delay": -1}])
def test_policy_bounds(kwargs):
    with pytest.raises(ValidationError):
        RetryPolicy(**kwargs)
