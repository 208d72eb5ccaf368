"""
Media Provider Adapters

Uniform submit / poll / cancel access to external generation backends:
- base: the MediaProvider contract and its value types
- fallback: validated cyclic fallback chain between providers
- registry: provider lookup with per-provider circuit breakers
- http_provider: Kie AI market API adapter
- simulated: in-process provider for demos and tests
"""

from .base import MediaProvider, PollResult, ProviderHandle, ProviderStatus
from .fallback import FallbackChain
from .http_provider import HttpMediaProvider, build_http_providers
from .registry import ProviderRegistry
from .simulated import SimulatedMediaProvider

__all__ = [
    "MediaProvider",
    "PollResult",
    "ProviderHandle",
    "ProviderStatus",
    "FallbackChain",
    "HttpMediaProvider",
    "build_http_providers",
    "ProviderRegistry",
    "SimulatedMediaProvider",
]
