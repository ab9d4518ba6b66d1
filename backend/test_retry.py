"""
Tests for the retry policy.
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(__file__))

from errors import AuthError, NetworkError, UnknownError
from retry import RetryPolicy


class Flaky:
    """Raises the queued errors in order, then returns value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def _policy(max_attempts=3, sleeps=None):
    async def fake_sleep(delay):
        if sleeps is not None:
            sleeps.append(delay)

    return RetryPolicy(max_attempts=max_attempts, base_delay=1.0, multiplier=2.0, sleep=fake_sleep)


def test_backoff_is_exponential():
    policy = RetryPolicy(base_delay=1.0, multiplier=2.0)
    assert [policy.backoff_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_succeeds_on_third_attempt():
    sleeps = []
    operation = Flaky([NetworkError("down"), NetworkError("down")])

    result = await _policy(3, sleeps).run(operation)

    assert result == "ok"
    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_last_error_propagates_when_attempts_run_out():
    first, second = NetworkError("first"), NetworkError("second")
    operation = Flaky([first, second])

    with pytest.raises(NetworkError) as exc_info:
        await _policy(2).run(operation)

    assert exc_info.value is second
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_non_retryable_error_is_not_retried():
    operation = Flaky([AuthError("bad key", status_code=401)])

    with pytest.raises(AuthError):
        await _policy(3).run(operation)

    assert operation.calls == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried_client_errors_are_not():
    retried = Flaky([UnknownError("boom", status_code=503)])
    assert await _policy(3).run(retried) == "ok"
    assert retried.calls == 2

    fatal = Flaky([UnknownError("teapot", status_code=418)])
    with pytest.raises(UnknownError):
        await _policy(3).run(fatal)
    assert fatal.calls == 1


@pytest.mark.asyncio
async def test_on_retry_hook_sees_each_failed_attempt():
    seen = []
    operation = Flaky([NetworkError("a"), NetworkError("b")])

    await _policy(3).run(operation, on_retry=lambda attempt, e: seen.append((attempt, str(e))))

    assert seen == [(1, "a"), (2, "b")]
