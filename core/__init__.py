"""
Content Orchestrator Core Components

Foundational infrastructure shared by the queue, scheduler and pipeline:
- Configuration loaded from the environment
- Error taxonomy
- Injectable clocks for deterministic scheduling
- Circuit breaker for provider resilience
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState
from .clock import Clock, ManualClock, SystemClock
from .config import Config, get_config
from .errors import (
    InvalidRequest,
    JobTimeout,
    NotFound,
    OrchestratorError,
    ProviderUnavailable,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "Clock",
    "ManualClock",
    "SystemClock",
    "Config",
    "get_config",
    "InvalidRequest",
    "JobTimeout",
    "NotFound",
    "OrchestratorError",
    "ProviderUnavailable",
]
