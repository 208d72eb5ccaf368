"""
Provider Registry - owns the adapters and their circuit breakers.

All provider calls made by the job queue go through here so that every
failure mode (open breaker, slow call, unexpected exception) arrives at the
queue as one of the orchestration error types.
"""

import logging
from typing import TYPE_CHECKING, Iterable, Optional

from core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from core.clock import Clock, SystemClock
from core.errors import InvalidRequest, OrchestratorError, ProviderUnavailable

from .base import MediaProvider, PollResult, ProviderHandle
from .fallback import FallbackChain

if TYPE_CHECKING:
    from services.queue.models import JobSpec

logger = logging.getLogger(__name__)


# Breaker tuning per backend. Submit/poll are short calls, the long
# generation itself happens provider-side.
PROVIDER_BREAKER_CONFIGS = {
    "sora": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
    "runway": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
    "domoai": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
    "kling": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=45.0),
}


def breaker_config_for(provider: str, call_timeout: float) -> CircuitBreakerConfig:
    base = PROVIDER_BREAKER_CONFIGS.get(provider, CircuitBreakerConfig())
    return CircuitBreakerConfig(
        failure_threshold=base.failure_threshold,
        recovery_timeout=base.recovery_timeout,
        half_open_max_calls=base.half_open_max_calls,
        success_threshold=base.success_threshold,
        timeout=call_timeout,
        # A rejected request says nothing about provider health
        excluded_exceptions=(InvalidRequest,),
    )


class ProviderRegistry:
    """
    Registered media providers plus the fallback chain between them.

    Usage:
        registry = ProviderRegistry(
            [sora, runway, domoai, kling],
            FallbackChain.from_order(["sora", "runway", "domoai", "kling"]),
        )
        handle = await registry.submit("sora", spec, "job-1:0")
    """

    def __init__(
        self,
        providers: Iterable[MediaProvider],
        fallback: FallbackChain,
        clock: Optional[Clock] = None,
        call_timeout: float = 30.0,
    ):
        self.fallback = fallback
        self._clock = clock or SystemClock()
        self._providers: dict[str, MediaProvider] = {}
        self._breakers: dict[str, CircuitBreaker] = {}

        for provider in providers:
            self.register(provider, call_timeout=call_timeout)

    def register(self, provider: MediaProvider, call_timeout: float = 30.0):
        self._providers[provider.name] = provider
        self._breakers[provider.name] = CircuitBreaker(
            provider.name,
            breaker_config_for(provider.name, call_timeout),
            clock=self._clock,
        )
        if provider.name not in self.fallback:
            logger.warning(f"Provider {provider.name} is registered but not in the fallback chain")

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def is_available(self, name: str) -> bool:
        """Registered and reachable through the fallback chain."""
        return name in self._providers and name in self.fallback

    def fallback_for(self, name: str) -> str:
        return self.fallback.next(name)

    def breaker(self, name: str) -> CircuitBreaker:
        return self._breakers[name]

    def _resolve(self, name: str) -> tuple[MediaProvider, CircuitBreaker]:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderUnavailable(
                f"Provider {name} is not configured",
                error_code="PROVIDER_NOT_CONFIGURED",
                provider=name,
            )
        return provider, self._breakers[name]

    async def _guarded(self, name: str, breaker: CircuitBreaker, func, *args):
        try:
            return await breaker.call(func, *args)
        except OrchestratorError:
            raise
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            raise ProviderUnavailable(
                f"{name} call failed: {error_msg}",
                error_code="UNEXPECTED_ERROR",
                provider=name,
            ) from e

    async def submit(self, name: str, spec: "JobSpec", idempotency_key: str) -> ProviderHandle:
        provider, breaker = self._resolve(name)
        return await self._guarded(name, breaker, provider.submit, spec, idempotency_key)

    async def poll(self, handle: ProviderHandle) -> PollResult:
        provider, breaker = self._resolve(handle.provider)
        return await self._guarded(handle.provider, breaker, provider.poll, handle)

    async def cancel(self, handle: ProviderHandle):
        """Best-effort cancel. Failures are logged, never raised."""
        provider = self._providers.get(handle.provider)
        if provider is None:
            return
        try:
            await provider.cancel(handle)
        except Exception as e:
            logger.warning(f"Cancel of {handle.handle_id} on {handle.provider} failed: {e}")

    def get_circuit_breaker_status(self) -> dict[str, dict]:
        """Get status of all circuit breakers."""
        return {
            name: breaker.get_status()
            for name, breaker in self._breakers.items()
        }
