#!/usr/bin/env python3
"""Tests for resilience patterns.

Tests cover:
    - Circuit breaker state transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
    - Single probe admission while HALF_OPEN
    - Retry with exponential backoff behavior
    - Timeouts
"""
import asyncio

import pytest

from src.tripweaver.exceptions import (
    CircuitOpenError,
    NetworkError,
    ProviderCallError,
    RateLimitError,
    ServerError,
)
from src.tripweaver.resilience import (
    CircuitBreaker,
    CircuitState,
    retry_async,
    with_timeout,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def always_fails():
    raise ServerError("fail", status_code=500)


async def succeeds():
    return "ok"


# ============================================
# Circuit Breaker State Transition Tests
# ============================================

class TestCircuitBreakerStateTransitions:
    """Test circuit breaker state machine transitions."""

    def test_initial_state_is_closed(self):
        """Circuit should start in CLOSED state."""
        circuit = CircuitBreaker(failure_threshold=3)
        assert circuit.state == CircuitState.CLOSED
        assert not circuit.is_open
        assert circuit.failure_count == 0
        assert circuit.allows_request()

    async def test_closed_to_open_after_consecutive_failures(self):
        """Circuit should open after reaching failure threshold."""
        circuit = CircuitBreaker(failure_threshold=3, cooldown=60.0)

        for i in range(2):
            with pytest.raises(ServerError):
                await circuit.call(always_fails)
            assert circuit.state == CircuitState.CLOSED
            assert circuit.failure_count == i + 1

        with pytest.raises(ServerError):
            await circuit.call(always_fails)

        assert circuit.state == CircuitState.OPEN
        assert circuit.failure_count == 3

    async def test_success_resets_consecutive_failures(self):
        """A success in CLOSED should reset the failure count."""
        circuit = CircuitBreaker(failure_threshold=3)

        for _ in range(2):
            with pytest.raises(ServerError):
                await circuit.call(always_fails)
        await circuit.call(succeeds)

        assert circuit.failure_count == 0
        assert circuit.state == CircuitState.CLOSED

    async def test_open_rejects_without_calling(self):
        """Open circuit should reject requests without calling the function."""
        circuit = CircuitBreaker(failure_threshold=1, cooldown=60.0)
        calls = 0

        async def tracked():
            nonlocal calls
            calls += 1
            raise ServerError("fail", status_code=500)

        with pytest.raises(ServerError):
            await circuit.call(tracked)

        with pytest.raises(CircuitOpenError) as exc_info:
            await circuit.call(tracked)

        assert calls == 1
        assert exc_info.value.reset_at is not None
        assert not circuit.allows_request()

    async def test_open_to_half_open_after_cooldown_then_closed(self):
        """First call after the cooldown is a probe; success closes the circuit."""
        clock = FakeClock()
        circuit = CircuitBreaker(failure_threshold=1, cooldown=30.0, clock=clock)

        with pytest.raises(ServerError):
            await circuit.call(always_fails)
        assert circuit.state == CircuitState.OPEN

        clock.advance(29.0)
        assert not circuit.allows_request()

        clock.advance(1.0)
        assert circuit.allows_request()
        assert await circuit.call(succeeds) == "ok"
        assert circuit.state == CircuitState.CLOSED

    async def test_half_open_probe_failure_reopens(self):
        """A failed probe should reopen the circuit and restart the cooldown."""
        clock = FakeClock()
        circuit = CircuitBreaker(failure_threshold=1, cooldown=10.0, clock=clock)

        with pytest.raises(ServerError):
            await circuit.call(always_fails)
        clock.advance(10.0)

        with pytest.raises(ServerError):
            await circuit.call(always_fails)

        assert circuit.state == CircuitState.OPEN
        assert not circuit.allows_request()

    async def test_half_open_admits_single_probe(self):
        """While a probe is in flight, other calls are rejected."""
        clock = FakeClock()
        circuit = CircuitBreaker(failure_threshold=1, cooldown=10.0, clock=clock)
        with pytest.raises(ServerError):
            await circuit.call(always_fails)
        clock.advance(10.0)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.create_task(circuit.call(slow_probe))
        await asyncio.sleep(0)
        assert circuit.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await circuit.call(succeeds)

        release.set()
        assert await probe == "probe"
        assert circuit.state == CircuitState.CLOSED

    def test_force_open_and_reset(self):
        """Operators can force the circuit open and reset it."""
        circuit = CircuitBreaker(failure_threshold=5, cooldown=60.0)

        circuit.force_open()
        assert circuit.is_open
        assert not circuit.allows_request()

        circuit.reset()
        assert circuit.state == CircuitState.CLOSED
        assert circuit.failure_count == 0

    def test_get_status_returns_monitoring_data(self):
        """Should return status for monitoring."""
        circuit = CircuitBreaker(failure_threshold=5, cooldown=60.0, name="ollama")

        status = circuit.get_status()

        assert status["name"] == "ollama"
        assert status["state"] == "closed"
        assert status["failure_threshold"] == 5
        assert status["cooldown_seconds"] == 60.0


# ============================================
# Retry Behavior Tests
# ============================================

class TestRetryBehavior:
    """Test retry_async behavior."""

    async def test_succeeds_on_first_attempt(self):
        """Should return immediately on success."""
        calls = 0

        async def ok():
            nonlocal calls
            calls += 1
            return "success"

        assert await retry_async(ok, max_attempts=3, initial_delay=0) == "success"
        assert calls == 1

    async def test_succeeds_after_transient_failures(self):
        """Should retry and succeed after transient failures."""
        calls = 0

        async def fails_twice():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise NetworkError("Network error")
            return "success"

        result = await retry_async(fails_twice, max_attempts=3, initial_delay=0)

        assert result == "success"
        assert calls == 3

    async def test_exhausts_attempts_and_raises_last_error(self):
        """Should raise the last error after max_attempts."""
        calls = 0

        async def always_network_error():
            nonlocal calls
            calls += 1
            raise NetworkError(f"failure {calls}")

        with pytest.raises(NetworkError, match="failure 3"):
            await retry_async(always_network_error, max_attempts=3, initial_delay=0)
        assert calls == 3

    async def test_non_retryable_exception_propagates_immediately(self):
        """Exceptions outside retryable_exceptions should not be retried."""
        calls = 0

        async def bad_value():
            nonlocal calls
            calls += 1
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await retry_async(bad_value, max_attempts=3, initial_delay=0)
        assert calls == 1

    async def test_unrecoverable_error_is_not_retried(self):
        """A TripWeaverError marked unrecoverable should stop retrying."""
        calls = 0

        async def rejected():
            nonlocal calls
            calls += 1
            raise ProviderCallError("bad request", recoverable=False)

        with pytest.raises(ProviderCallError):
            await retry_async(rejected, max_attempts=3, initial_delay=0)
        assert calls == 1

    async def test_on_retry_callback_and_backoff(self, monkeypatch):
        """Delays should grow by backoff_factor and on_retry should see each failure."""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        seen = []

        async def fails():
            raise ServerError("down", status_code=503)

        with pytest.raises(ServerError):
            await retry_async(
                fails,
                max_attempts=4,
                initial_delay=1.0,
                backoff_factor=2.0,
                jitter=False,
                on_retry=lambda e, attempt: seen.append(attempt),
            )

        assert delays == [1.0, 2.0, 4.0]
        assert seen == [1, 2, 3]

    async def test_rate_limit_retry_after_overrides_delay(self, monkeypatch):
        """RateLimitError.retry_after should set the next delay."""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        calls = 0

        async def limited():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RateLimitError("slow down", retry_after=7)
            return "ok"

        assert await retry_async(limited, initial_delay=1.0, jitter=False) == "ok"
        assert delays == [7.0]


# ============================================
# Timeout Tests
# ============================================

class TestWithTimeout:
    """Test with_timeout."""

    async def test_returns_result_within_timeout(self):
        assert await with_timeout(succeeds, 1.0) == "ok"

    async def test_raises_on_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await with_timeout(slow, 0.01)

    async def test_none_timeout_is_unbounded(self):
        assert await with_timeout(succeeds, None) == "ok"
