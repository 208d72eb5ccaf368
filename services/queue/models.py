"""
Job queue data model.

JobSpec is the immutable request a caller hands to the queue. Job is the
queue-owned runtime record; callers only ever see JobStatus snapshots of it.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from services.pipeline.models import PipelineResult
from services.providers.base import ProviderHandle


class ContentType(str, Enum):
    """Content classes the system generates."""
    NFT_SHOWCASE = "nft-showcase"
    STORY_CHAPTER = "story-chapter"
    COLLECTION_HIGHLIGHT = "collection-highlight"
    TRENDING_ANALYSIS = "trending-analysis"


class JobState(str, Enum):
    """Lifecycle of a job inside the queue."""
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


# Progress milestones (0-100)
PROGRESS_QUEUED = 0
PROGRESS_DISPATCHED = 10
PROGRESS_PROCESSING = 50
PROGRESS_COMPLETED = 100


class JobSpec(BaseModel):
    """Immutable description of requested work."""
    model_config = ConfigDict(frozen=True)

    content_type: ContentType
    duration_seconds: int = Field(gt=0, le=600)
    provider: str = Field(min_length=1)
    visual_style: str = "cinematic"
    music_sync: bool = False
    priority: int = Field(default=5, ge=1, le=10)  # 1-10, higher is more urgent
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Optional generation context
    prompt: Optional[str] = None
    nft_contract: Optional[str] = None
    token_id: Optional[str] = None

    # Post-processing flags
    upscale: bool = False
    add_subtitles: bool = False
    # Overrides the pipeline default when set
    quality_threshold: Optional[int] = Field(default=None, ge=0, le=100)


@dataclass
class Job:
    """Mutable runtime record. Owned exclusively by the JobQueue."""
    spec: JobSpec
    priority: int
    sequence: int
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.QUEUED
    provider: str = ""
    handle: Optional[ProviderHandle] = None
    batch_id: Optional[str] = None

    retry_count: int = 0
    attempts: list[str] = field(default_factory=list)
    progress: int = PROGRESS_QUEUED

    last_error: Optional[str] = None
    error_code: Optional[str] = None

    result_url: Optional[str] = None
    pipeline_result: Optional[PipelineResult] = None

    # Timing
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    not_before: Optional[datetime] = None

    def __post_init__(self):
        if not self.provider:
            self.provider = self.spec.provider

    def advance_progress(self, percent: int) -> bool:
        """Raise progress to ``percent``. Never lowers it."""
        if percent > self.progress:
            self.progress = percent
            return True
        return False

    @property
    def idempotency_key(self) -> str:
        return f"{self.id}:{self.retry_count}"

    def to_status(self) -> "JobStatus":
        return JobStatus(
            job_id=self.id,
            state=self.state,
            progress=self.progress,
            provider=self.provider,
            priority=self.priority,
            retry_count=self.retry_count,
            attempts=list(self.attempts),
            batch_id=self.batch_id,
            result_url=self.result_url,
            result=self.pipeline_result,
            error=self.last_error if self.state != JobState.COMPLETED else None,
            error_code=self.error_code if self.state != JobState.COMPLETED else None,
            queued_at=self.queued_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    def to_record(self) -> dict:
        """JSON-safe snapshot for a state store."""
        return {
            "id": self.id,
            "spec": self.spec.model_dump(mode="json"),
            "state": self.state.value,
            "priority": self.priority,
            "provider": self.provider,
            "handle": self.handle.model_dump(mode="json") if self.handle else None,
            "batch_id": self.batch_id,
            "retry_count": self.retry_count,
            "attempts": list(self.attempts),
            "progress": self.progress,
            "last_error": self.last_error,
            "error_code": self.error_code,
            "result_url": self.result_url,
            "pipeline_result": (
                self.pipeline_result.model_dump(mode="json")
                if self.pipeline_result else None
            ),
            "queued_at": self.queued_at.isoformat() if self.queued_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobStatus(BaseModel):
    """Read-only view of a job returned to callers."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    state: JobState
    progress: int
    provider: str
    priority: int
    retry_count: int
    attempts: list[str] = Field(default_factory=list)
    batch_id: Optional[str] = None
    result_url: Optional[str] = None
    result: Optional[PipelineResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class QueueStats(BaseModel):
    """Counts per queue state."""
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
