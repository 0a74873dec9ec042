#!/usr/bin/env python3
"""Resilience Patterns for provider calls and workflow steps.

This module provides the resilience patterns the orchestration core relies on:
    - Retry with exponential backoff
    - Circuit breaker (one per provider)
    - Timeouts

Example:
    # Retry with exponential backoff
    result = await retry_async(backend.generate, request, max_attempts=3)

    # Circuit breaker
    circuit = CircuitBreaker(failure_threshold=5, cooldown=60, name="ollama")
    result = await circuit.call(backend.generate, request)
"""
import asyncio
import logging
import random
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .exceptions import (
    CircuitOpenError,
    ProviderCallError,
    RateLimitError,
    TripWeaverError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry with Exponential Backoff
# ============================================

# Default exceptions that are considered retryable
DEFAULT_RETRYABLE_EXCEPTIONS = (
    ProviderCallError,
    asyncio.TimeoutError,
    ConnectionResetError,
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs,
) -> T:
    """Retry an async function call with exponential backoff.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_attempts: Maximum attempts (including the first try)
        backoff_factor: Delay multiplier between attempts
        initial_delay: Delay in seconds before the first retry
        max_delay: Maximum delay in seconds
        jitter: Add random jitter to prevent thundering herd
        retryable_exceptions: Exceptions to retry on
        on_retry: Optional callback called before each retry with (exception, attempt)
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func

    Example:
        response = await retry_async(
            backend.generate,
            request,
            max_attempts=3,
            initial_delay=1.0,
        )
    """
    last_exception: Optional[Exception] = None
    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            last_exception = e

            if isinstance(e, TripWeaverError) and not e.recoverable:
                logger.warning(f"Attempt {attempt}/{max_attempts} failed permanently: {e}")
                raise

            if isinstance(e, RateLimitError) and e.retry_after:
                delay = float(e.retry_after)

            if attempt < max_attempts:
                actual_delay = min(delay, max_delay)
                if jitter:
                    actual_delay = actual_delay * (0.5 + random.random())

                if on_retry:
                    on_retry(e, attempt)

                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed: {e}. "
                    f"Retrying in {actual_delay:.2f}s"
                )
                await asyncio.sleep(actual_delay)
                delay = min(delay * backoff_factor, max_delay)
            else:
                logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                raise

    if last_exception:
        raise last_exception
    raise RuntimeError("Retry logic error")


# ============================================
# Timeouts
# ============================================

async def with_timeout(
    func: Callable[..., Awaitable[T]],
    timeout_seconds: Optional[float],
    *args,
    **kwargs,
) -> T:
    """Execute async function with a timeout.

    A ``None`` timeout runs the call unbounded.

    Raises:
        asyncio.TimeoutError: If the call does not finish in time
    """
    if timeout_seconds is None:
        return await func(*args, **kwargs)
    return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)


# ============================================
# Circuit Breaker
# ============================================

class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Failing, requests rejected immediately
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker to prevent cascading failures.

    State Transitions:
        CLOSED -> OPEN: When consecutive failures reach failure_threshold
        OPEN -> HALF_OPEN: On the first call after the cooldown expires
        HALF_OPEN -> CLOSED: When success_threshold probe calls succeed
        HALF_OPEN -> OPEN: When a probe call fails

    Only one probe call is admitted while HALF_OPEN.

    Example:
        circuit = CircuitBreaker(failure_threshold=5, cooldown=60)

        try:
            result = await circuit.call(fetch_data)
        except CircuitOpenError:
            result = await fallback()
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown: float = 60.0,
        success_threshold: int = 1,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            cooldown: Seconds an open circuit rejects calls before probing
            success_threshold: Probe successes needed in HALF_OPEN to close
            name: Circuit breaker name for logging
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.success_threshold = success_threshold
        self.name = name
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._last_failure_at: Optional[datetime] = None
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if circuit is open (rejecting requests)."""
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        """Get current consecutive failure count."""
        return self._failure_count

    def _cooldown_elapsed(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self.cooldown

    def allows_request(self) -> bool:
        """Whether a call would currently be admitted (no state change)."""
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.OPEN:
            return self._cooldown_elapsed()
        return not self._probe_in_flight

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Execute function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit is open and the cooldown has not passed
            Any exception from func (after updating circuit state)
        """
        async with self._lock:
            if not self.allows_request():
                reset_at = None
                if self._opened_at is not None:
                    remaining = max(0.0, self.cooldown - (self._clock() - self._opened_at))
                    reset_at = datetime.utcnow() + timedelta(seconds=remaining)
                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is open",
                    reset_at=reset_at,
                    failure_count=self._failure_count,
                    provider_id=self.name,
                )

            if self._state == CircuitState.OPEN:
                logger.info(f"Circuit '{self.name}' transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0

            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e)
            raise
        except asyncio.CancelledError:
            self._probe_in_flight = False
            raise
        await self._on_success()
        return result

    async def _on_success(self):
        """Handle successful request."""
        async with self._lock:
            self._failure_count = 0
            self._probe_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info(
                        f"Circuit '{self.name}' closing after "
                        f"{self._success_count} successful probe(s)"
                    )
                    self._state = CircuitState.CLOSED
                    self._success_count = 0
                    self._opened_at = None

    async def _on_failure(self, exception: Exception):
        """Handle failed request."""
        async with self._lock:
            self._failure_count += 1
            self._last_failure_at = datetime.utcnow()
            self._probe_in_flight = False

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    f"Circuit '{self.name}' reopening after probe failure: {exception}"
                )
                self._trip()

            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    logger.warning(
                        f"Circuit '{self.name}' opening after "
                        f"{self._failure_count} consecutive failures"
                    )
                    self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._success_count = 0

    def force_open(self) -> None:
        """Open the circuit immediately (operator override)."""
        logger.warning(f"Circuit '{self.name}' forced OPEN")
        self._trip()

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        self._last_failure_at = None
        self._probe_in_flight = False
        logger.info(f"Circuit '{self.name}' manually reset")

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status for monitoring."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self.failure_threshold,
            "cooldown_seconds": self.cooldown,
            "last_failure_at": (
                self._last_failure_at.isoformat()
                if self._last_failure_at
                else None
            ),
        }


__all__ = [
    "retry_async",
    "with_timeout",
    "DEFAULT_RETRYABLE_EXCEPTIONS",
    "CircuitBreaker",
    "CircuitState",
]
