"""Tests for identifiers, timestamps and the retry policy."""

import pytest

from agentgate.config.schema import RetryConfig
from agentgate.utils.backoff import BackoffPolicy
from agentgate.utils.helpers import (
    MonotonicClock,
    new_public_id,
    new_token,
    parse_since,
    random_suffix,
    to_iso,
    truncate_string,
)


def test_identifier_shapes():
    assert len(new_token()) == 32
    assert len(new_public_id()) == 12
    assert new_token() != new_token()
    suffix = random_suffix()
    assert len(suffix) == 3 and suffix.isalnum() and suffix == suffix.lower()


def test_monotonic_clock_survives_clock_rollback():
    readings = iter([1000, 900, 900])
    clock = MonotonicClock(now_ms=lambda: next(readings))
    assert [clock.next(), clock.next(), clock.next()] == [1000, 1001, 1002]


def test_parse_since_accepts_millis_and_iso():
    assert parse_since("1718000000000") == 1718000000000
    assert parse_since(to_iso(1718000000123)) == 1718000000123
    assert parse_since("2024-06-10T06:13:20Z") == 1718000000000
    assert parse_since(None) == 0
    assert parse_since("yesterday") == 0


def test_truncate_string():
    assert truncate_string("short") == "short"
    assert truncate_string("x" * 20, max_len=10) == "xxxxxxx..."


def test_backoff_delays_are_capped():
    policy = BackoffPolicy(initial_delay_ms=100, max_delay_ms=350, multiplier=2.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.1, 0.2, 0.35, 0.35]


@pytest.mark.asyncio
async def test_backoff_retries_transient_errors_only():
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    config = RetryConfig(initial_delay_ms=10, max_attempts=3)
    policy = BackoffPolicy(config.initial_delay_ms, config.max_delay_ms, config.multiplier, config.max_attempts, sleep=fake_sleep)
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ConnectionError("refused")
        return "ok"

    result = await policy.run(flaky, is_transient=lambda e: isinstance(e, ConnectionError), label="test")
    assert result == "ok"
    assert calls == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_backoff_does_not_retry_permanent_errors():
    policy = BackoffPolicy(initial_delay_ms=1, max_attempts=5)
    calls = 0

    async def rejected():
        nonlocal calls
        calls += 1
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await policy.run(rejected, is_transient=lambda e: isinstance(e, ConnectionError), label="test")
    assert calls == 1


@pytest.mark.asyncio
async def test_backoff_gives_up_after_max_attempts():
    policy = BackoffPolicy(initial_delay_ms=1, max_delay_ms=1, max_attempts=2)
    calls = 0

    async def down():
        nonlocal calls
        calls += 1
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await policy.run(down, is_transient=lambda e: True, label="test")
    assert calls == 2
