"""
Per-provider circuit breaker.

A provider that keeps failing is taken out of rotation for a while. Calls are
refused immediately with CircuitBreakerOpen, which is a ProviderUnavailable,
so the job queue moves the job along its fallback chain instead of waiting on
a dead endpoint.

    closed    -> open       after ``failure_threshold`` consecutive failures
    open      -> half_open  once ``recovery_timeout`` seconds passed on the clock
    half_open -> closed     after ``success_threshold`` successes
    half_open -> open       on any failure
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .clock import Clock, SystemClock
from .errors import ProviderUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Breaker tuning for one provider."""
    failure_threshold: int = 5
    recovery_timeout: float = 30.0  # seconds spent open before probing
    half_open_max_calls: int = 3
    success_threshold: int = 2
    timeout: float = 30.0  # per call
    excluded_exceptions: tuple = ()  # never count against the provider


@dataclass
class BreakerCounters:
    consecutive_failures: int = 0
    probe_calls: int = 0
    probe_successes: int = 0
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None


class CircuitBreakerOpen(ProviderUnavailable):
    """The provider is out of rotation."""

    default_code = "CIRCUIT_BREAKER_OPEN"

    def __init__(self, provider: str, retry_after: float):
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker open for {provider}, retry after {retry_after:.1f}s",
            provider=provider,
        )


class CircuitBreaker:
    """
    Guards the calls made to one provider.

    Usage:
        breaker = CircuitBreaker("sora", CircuitBreakerConfig(failure_threshold=3))
        handle = await breaker.call(provider.submit, spec, key)
    """

    def __init__(
        self,
        provider: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.provider = provider
        self.config = config or CircuitBreakerConfig()
        self.clock = clock or SystemClock()
        self.state = CircuitState.CLOSED
        self.opened_at: Optional[datetime] = None
        self.counters = BreakerCounters()
        self._lock = asyncio.Lock()

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _seconds_open(self) -> float:
        if self.opened_at is None:
            return 0.0
        return (self.clock.now() - self.opened_at).total_seconds()

    def _set_state(self, state: CircuitState):
        if state == self.state:
            return
        logger.info(f"Circuit breaker [{self.provider}]: {self.state.value} -> {state.value}")
        self.state = state

        if state == CircuitState.OPEN:
            self.opened_at = self.clock.now()
        elif state == CircuitState.HALF_OPEN:
            self.counters.probe_calls = 0
            self.counters.probe_successes = 0
        else:
            self.opened_at = None
            self.counters.consecutive_failures = 0

    async def _admit(self):
        async with self._lock:
            self.counters.total_calls += 1

            if self.state == CircuitState.OPEN:
                waited = self._seconds_open()
                if waited < self.config.recovery_timeout:
                    raise CircuitBreakerOpen(self.provider, self.config.recovery_timeout - waited)
                self._set_state(CircuitState.HALF_OPEN)

            if self.state == CircuitState.HALF_OPEN:
                if self.counters.probe_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.provider, self.config.recovery_timeout)
                self.counters.probe_calls += 1

    async def _record_success(self):
        async with self._lock:
            self.counters.total_successes += 1
            self.counters.last_success_at = self.clock.now()
            self.counters.consecutive_failures = 0

            if self.state == CircuitState.HALF_OPEN:
                self.counters.probe_successes += 1
                if self.counters.probe_successes >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)

    async def _record_failure(self, error: BaseException):
        async with self._lock:
            if isinstance(error, self.config.excluded_exceptions):
                # Says nothing about provider health, hand the probe slot back
                if self.state == CircuitState.HALF_OPEN and self.counters.probe_calls > 0:
                    self.counters.probe_calls -= 1
                return

            self.counters.consecutive_failures += 1
            self.counters.total_failures += 1
            self.counters.last_failure_at = self.clock.now()

            if self.state == CircuitState.HALF_OPEN or (
                self.state == CircuitState.CLOSED
                and self.counters.consecutive_failures >= self.config.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)

            logger.warning(
                f"Circuit breaker [{self.provider}] failure {self.counters.consecutive_failures}"
                f"/{self.config.failure_threshold}: {error}"
            )

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Run ``func`` if the provider is in rotation.

        Raises:
            CircuitBreakerOpen: provider out of rotation
            ProviderUnavailable: the call exceeded ``config.timeout`` (CALL_TIMEOUT)
            Exception: whatever ``func`` raised
        """
        await self._admit()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            await self._record_failure(e)
            raise ProviderUnavailable(
                f"{self.provider} call timed out after {self.config.timeout:.0f}s",
                error_code="CALL_TIMEOUT",
                provider=self.provider,
            ) from e
        except Exception as e:
            await self._record_failure(e)
            raise

        await self._record_success()
        return result

    def reset(self):
        """Put the provider back in rotation and clear the counters."""
        self._set_state(CircuitState.CLOSED)
        self.counters = BreakerCounters()

    def force_open(self):
        """Take the provider out of rotation now."""
        self._set_state(CircuitState.OPEN)

    def get_status(self) -> dict:
        retry_after = 0.0
        if self.state == CircuitState.OPEN:
            retry_after = max(0.0, self.config.recovery_timeout - self._seconds_open())

        return {
            "provider": self.provider,
            "state": self.state.value,
            "consecutive_failures": self.counters.consecutive_failures,
            "retry_after": retry_after,
            "total_calls": self.counters.total_calls,
            "total_failures": self.counters.total_failures,
            "total_successes": self.counters.total_successes,
            "last_failure": (
                self.counters.last_failure_at.isoformat() if self.counters.last_failure_at else None
            ),
            "last_success": (
                self.counters.last_success_at.isoformat() if self.counters.last_success_at else None
            ),
        }
