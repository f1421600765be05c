from __future__ import annotations

import asyncio

import pytest

from fakes import SleepRecorder
from retry import RetryPolicy, fixed_backoff


class _Flaky:
    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or RuntimeError("flaky")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_retries_until_success() -> None:
    sleep = SleepRecorder()
    policy = RetryPolicy(
        max_attempts=3, backoff=fixed_backoff(1.0), retry_on=lambda e: True, sleep=sleep
    )
    operation = _Flaky(failures=2)

    assert asyncio.run(policy.run(operation)) == "ok"
    assert operation.calls == 3
    assert sleep.delays == [1.0, 1.0]


def test_raises_last_error_when_budget_exhausted() -> None:
    sleep = SleepRecorder()
    policy = RetryPolicy(max_attempts=2, retry_on=lambda e: True, sleep=sleep)
    operation = _Flaky(failures=5)

    with pytest.raises(RuntimeError, match="flaky"):
        asyncio.run(policy.run(operation))
    assert operation.calls == 2
    assert len(sleep.delays) == 1


def test_non_retryable_errors_propagate_immediately() -> None:
    sleep = SleepRecorder()
    policy = RetryPolicy(
        max_attempts=5, retry_on=lambda e: isinstance(e, TimeoutError), sleep=sleep
    )
    operation = _Flaky(failures=1, error=ValueError("bad input"))

    with pytest.raises(ValueError):
        asyncio.run(policy.run(operation))
    assert operation.calls == 1
    assert sleep.delays == []


def test_single_attempt_policy_never_sleeps() -> None:
    sleep = SleepRecorder()
    policy = RetryPolicy(max_attempts=1, retry_on=lambda e: True, timeout=300, sleep=sleep)
    operation = _Flaky(failures=1)

    with pytest.raises(RuntimeError):
        asyncio.run(policy.run(operation))
    assert sleep.delays == []
