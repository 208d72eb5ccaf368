"""
Job Queue

Priority queue that dispatches generation jobs to media providers, retries
them along the fallback chain and detects completion by polling.
"""

from .job_queue import JobQueue
from .models import (
    ContentType,
    Job,
    JobSpec,
    JobState,
    JobStatus,
    QueueStats,
)
from .priority import calculate_priority

__all__ = [
    "JobQueue",
    "ContentType",
    "Job",
    "JobSpec",
    "JobState",
    "JobStatus",
    "QueueStats",
    "calculate_priority",
]
