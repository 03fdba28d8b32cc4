"""
Tests for the retry policy

Run with: pytest backend/tests/test_backoff.py -v
"""

import asyncio
import logging

import httpx
import pytest

from brandforge.core.backoff import BackoffPolicy, is_transient_error
from brandforge.core.exceptions import MalformedResponseError, TransientRemoteError


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://serpapi.com/search.json")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(code, request=request))


def test_transient_classification():
    assert is_transient_error(TransientRemoteError("rate limited"))
    assert is_transient_error(asyncio.TimeoutError())
    assert is_transient_error(ConnectionError())
    assert is_transient_error(_status_error(429))
    assert is_transient_error(_status_error(503))
    assert not is_transient_error(_status_error(400))
    assert not is_transient_error(MalformedResponseError("bad json"))
    assert not is_transient_error(ValueError("bad input"))


def test_delay_grows_and_is_capped():
    policy = BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0, jitter=0.0)
    assert [policy.get_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]


def test_jitter_stays_within_bound():
    policy = BackoffPolicy(base_delay=2.0, jitter=0.25)
    for _ in range(50):
        assert 2.0 <= policy.get_delay(0) <= 2.5


def test_run_retries_transient_errors_until_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientRemoteError("try again")
        return "ok"

    policy = BackoffPolicy(max_attempts=3, base_delay=0.0)
    assert asyncio.run(policy.run(flaky, label="flaky")) == "ok"
    assert len(calls) == 3


def test_run_gives_up_after_max_attempts():
    calls = []

    async def always_down():
        calls.append(1)
        raise TransientRemoteError("down")

    policy = BackoffPolicy(max_attempts=3, base_delay=0.0)
    with pytest.raises(TransientRemoteError):
        asyncio.run(policy.run(always_down))
    assert len(calls) == 3


def test_run_does_not_retry_permanent_errors():
    calls = []

    async def broken():
        calls.append(1)
        raise ValueError("permanent")

    with pytest.raises(ValueError):
        asyncio.run(BackoffPolicy(max_attempts=5, base_delay=0.0).run(broken))
    assert len(calls) == 1


def test_run_times_out_each_try():
    async def slow():
        await asyncio.sleep(1.0)

    policy = BackoffPolicy(max_attempts=2, base_delay=0.0)
    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(policy.run(slow, timeout=0.01))


def test_run_honors_custom_retry_predicate():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise ValueError("model sent half an answer")
        return "ok"

    policy = BackoffPolicy(max_attempts=3, base_delay=0.0)
    result = asyncio.run(policy.run(flaky, is_retryable=lambda e: isinstance(e, ValueError)))

    assert result == "ok"
    assert len(calls) == 2


def test_run_logs_when_giving_up(caplog):
    async def always_down():
        raise TransientRemoteError("down")

    policy = BackoffPolicy(max_attempts=2, base_delay=0.0)
    with caplog.at_level(logging.WARNING, logger="brandforge.core.backoff"):
        with pytest.raises(TransientRemoteError):
            asyncio.run(policy.run(always_down, label="image generation"))

    assert "image generation failed after 2 attempt(s)" in caplog.text
