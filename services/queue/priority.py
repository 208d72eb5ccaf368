"""
Dispatch priority rules.

priority = clamp(spec.priority + content_type_boost + duration_boost, 1, 10)
"""

from .models import ContentType, JobSpec

MIN_PRIORITY = 1
MAX_PRIORITY = 10

# Time-sensitive content classes jump the queue
CONTENT_TYPE_BOOST: dict[ContentType, int] = {
    ContentType.TRENDING_ANALYSIS: 3,
}

# Short jobs clear the queue faster
SHORT_JOB_SECONDS = 30
SHORT_JOB_BOOST = 1


def clamp_priority(value: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, value))


def calculate_priority(spec: JobSpec) -> int:
    """Effective dispatch priority for a job spec."""
    priority = spec.priority
    priority += CONTENT_TYPE_BOOST.get(spec.content_type, 0)
    if spec.duration_seconds < SHORT_JOB_SECONDS:
        priority += SHORT_JOB_BOOST
    return clamp_priority(priority)
