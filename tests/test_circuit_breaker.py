"""
Circuit breaker and provider registry error mapping.
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpen,
    CircuitState,
)
from core.clock import ManualClock
from core.errors import InvalidRequest, ProviderUnavailable
from services.providers import ProviderHandle
from services.queue import JobSpec


class TestCircuitBreaker:

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            "sora",
            CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60.0, success_threshold=1),
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_passes_results_through(self, breaker):
        func = AsyncMock(return_value="ok")

        assert await breaker.call(func, 1, key="x") == "ok"
        func.assert_awaited_once_with(1, key="x")
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        func = AsyncMock(side_effect=RuntimeError("boom"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(func)

        assert breaker.is_open
        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await breaker.call(func)
        assert func.await_count == 2
        assert exc_info.value.error_code == "CIRCUIT_BREAKER_OPEN"
        assert exc_info.value.retry_after == 60.0
        assert isinstance(exc_info.value, ProviderUnavailable)

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker):
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))
        await breaker.call(AsyncMock(return_value="ok"))
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))

        assert breaker.is_closed
        assert breaker.get_status()["total_failures"] == 2

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self, breaker, clock):
        breaker.force_open()
        assert breaker.get_status()["retry_after"] == 60.0

        clock.advance(61)
        func = AsyncMock(return_value="ok")
        assert await breaker.call(func) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        breaker.force_open()
        clock.advance(61)

        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("still down")))
        assert breaker.is_open

    @pytest.mark.asyncio
    async def test_excluded_exceptions_not_counted(self, clock):
        breaker = CircuitBreaker(
            "sora",
            CircuitBreakerConfig(failure_threshold=1, excluded_exceptions=(InvalidRequest,)),
            clock=clock,
        )

        with pytest.raises(InvalidRequest):
            await breaker.call(AsyncMock(side_effect=InvalidRequest("bad prompt")))
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_excluded_exceptions_release_half_open_slots(self, clock):
        breaker = CircuitBreaker(
            "sora",
            CircuitBreakerConfig(
                recovery_timeout=60.0,
                half_open_max_calls=3,
                success_threshold=1,
                excluded_exceptions=(InvalidRequest,),
            ),
            clock=clock,
        )
        breaker.force_open()
        clock.advance(61)

        for _ in range(5):
            with pytest.raises(InvalidRequest):
                await breaker.call(AsyncMock(side_effect=InvalidRequest("task not found")))
        assert breaker.state == CircuitState.HALF_OPEN

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_call_timeout(self):
        breaker = CircuitBreaker("sora", CircuitBreakerConfig(timeout=0.01), clock=ManualClock())

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(ProviderUnavailable) as exc_info:
            await breaker.call(slow)

        assert exc_info.value.error_code == "CALL_TIMEOUT"
        assert breaker.counters.consecutive_failures == 1

    def test_reset(self, breaker):
        breaker.force_open()
        breaker.reset()

        status = breaker.get_status()
        assert status["state"] == "closed"
        assert status["consecutive_failures"] == 0
        assert status["retry_after"] == 0.0


class TestProviderRegistry:

    @pytest.fixture
    def job_spec(self):
        return JobSpec(content_type="nft-showcase", duration_seconds=20, provider="sora")

    @pytest.mark.asyncio
    async def test_breaker_open_becomes_provider_unavailable(self, registry, providers, job_spec):
        providers["sora"].fail_submits = -1

        # sora opens after three consecutive failures
        for i in range(3):
            with pytest.raises(ProviderUnavailable):
                await registry.submit("sora", job_spec, f"job:{i}")

        with pytest.raises(ProviderUnavailable) as exc_info:
            await registry.submit("sora", job_spec, "job:3")

        assert exc_info.value.error_code == "CIRCUIT_BREAKER_OPEN"
        assert len(providers["sora"].submitted) == 3

    @pytest.mark.asyncio
    async def test_breaker_recovers_with_clock(self, registry, providers, job_spec, clock):
        registry.breaker("sora").force_open()

        with pytest.raises(ProviderUnavailable):
            await registry.submit("sora", job_spec, "job:0")

        clock.advance(61)
        handle = await registry.submit("sora", job_spec, "job:1")
        assert handle.provider == "sora"

    @pytest.mark.asyncio
    async def test_rejections_do_not_open_breaker(self, registry, providers, job_spec):
        providers["sora"].reject_submits = True

        for i in range(5):
            with pytest.raises(InvalidRequest):
                await registry.submit("sora", job_spec, f"job:{i}")

        assert registry.breaker("sora").is_closed

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, registry, providers, job_spec):
        providers["sora"].submit = AsyncMock(side_effect=KeyError("taskId"))

        with pytest.raises(ProviderUnavailable) as exc_info:
            await registry.submit("sora", job_spec, "job:0")

        assert exc_info.value.error_code == "UNEXPECTED_ERROR"
        assert exc_info.value.provider == "sora"

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, registry):
        handle = ProviderHandle(provider="veo", handle_id="veo-1")

        with pytest.raises(ProviderUnavailable) as exc_info:
            await registry.poll(handle)

        assert exc_info.value.error_code == "PROVIDER_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_cancel_failure_swallowed(self, registry, providers):
        providers["sora"].cancel = AsyncMock(side_effect=RuntimeError("no cancel"))

        await registry.cancel(ProviderHandle(provider="sora", handle_id="sora-1"))

        providers["sora"].cancel.assert_awaited_once()

    def test_availability(self, registry):
        assert registry.is_available("kling")
        assert not registry.is_available("veo")
        assert registry.fallback_for("kling") == "sora"
        assert set(registry.get_circuit_breaker_status()) == {"sora", "runway", "domoai", "kling"}
