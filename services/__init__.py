"""
Content Orchestrator Services

- providers: media provider adapters, fallback chain, circuit breakers
- queue: priority job queue with retry and fallback
- pipeline: post-generation processing and quality gate
- scheduler: recurring batches, auto-publish and notifications
- storage: optional state snapshots
"""

from .pipeline import ContentPipeline, PipelineResult
from .providers import FallbackChain, ProviderRegistry
from .queue import JobQueue, JobSpec, JobState, JobStatus
from .scheduler import ScheduleConfig, Scheduler

__all__ = [
    "ContentPipeline",
    "PipelineResult",
    "FallbackChain",
    "ProviderRegistry",
    "JobQueue",
    "JobSpec",
    "JobState",
    "JobStatus",
    "ScheduleConfig",
    "Scheduler",
]
