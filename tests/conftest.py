"""
Shared fixtures: a manual clock, four simulated providers in the default
fallback cycle, and a queue wired to them.

Time never moves on its own in these tests. A test advances the clock and
calls tick() to run exactly one pass of the loop.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.clock import ManualClock
from core.config import QueueConfig, SchedulerConfig
from services.pipeline import ContentPipeline
from services.providers import FallbackChain, ProviderRegistry, SimulatedMediaProvider
from services.queue import JobQueue

PROVIDER_ORDER = ["sora", "runway", "domoai", "kling"]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def queue_config():
    return QueueConfig(
        concurrency=4,
        max_retries=3,
        base_delay=5.0,
        max_delay=300.0,
        poll_interval=10.0,
        job_timeout=600.0,
        per_provider_limit=2,
    )


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(tick_interval=10.0, notify_webhook_url="")


@pytest.fixture
def providers():
    """Simulated providers keyed by name."""
    return {name: SimulatedMediaProvider(name) for name in PROVIDER_ORDER}


@pytest.fixture
def registry(providers, clock):
    return ProviderRegistry(
        providers.values(),
        FallbackChain.from_order(PROVIDER_ORDER),
        clock=clock,
    )


@pytest.fixture
def pipeline():
    return ContentPipeline(quality_threshold=70)


@pytest.fixture
def progress_events():
    return []


@pytest.fixture
def queue(registry, pipeline, queue_config, clock, progress_events):
    def record(job_id, percent, message):
        progress_events.append((job_id, percent, message))

    return JobQueue(
        registry,
        pipeline=pipeline,
        config=queue_config,
        clock=clock,
        on_progress=record,
    )


@pytest.fixture
def spec():
    return {
        "content_type": "nft-showcase",
        "duration_seconds": 20,
        "provider": "sora",
        "priority": 5,
    }


@pytest.fixture
def drive(clock):
    """Tick the queue until ``job_id`` is terminal, advancing the clock between ticks."""

    async def _drive(queue, job_id, step=10.0, max_ticks=200):
        for _ in range(max_ticks):
            await queue.tick()
            status = await queue.status(job_id)
            if status.is_terminal:
                return status
            clock.advance(step)
        raise AssertionError(f"Job {job_id} still {status.state.value} after {max_ticks} ticks")

    return _drive
