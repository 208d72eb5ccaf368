"""
Scheduler data model.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.queue.models import ContentType, JobSpec


class Frequency(str, Enum):
    """Named cadences."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class Platform(str, Enum):
    """Publishing destinations."""
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    VR_SPACE = "vr-space"


class ContentTemplate(BaseModel):
    """One job generated per template on every tick."""
    model_config = ConfigDict(frozen=True)

    content_type: ContentType
    duration_seconds: int = Field(gt=0, le=600)
    provider: str = Field(min_length=1)
    visual_style: str = "cinematic"
    music_sync: bool = False
    priority: int = Field(default=5, ge=1, le=10)
    prompt: Optional[str] = None
    upscale: bool = False
    add_subtitles: bool = False

    def to_job_spec(self, created_at: datetime, quality_threshold: Optional[int] = None) -> JobSpec:
        return JobSpec(
            content_type=self.content_type,
            duration_seconds=self.duration_seconds,
            provider=self.provider,
            visual_style=self.visual_style,
            music_sync=self.music_sync,
            priority=self.priority,
            prompt=self.prompt,
            upscale=self.upscale,
            add_subtitles=self.add_subtitles,
            quality_threshold=quality_threshold,
            created_at=created_at,
        )


class ScheduleConfig(BaseModel):
    """What to generate, how often, and what to do with the results."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    frequency: Frequency
    cron_expression: Optional[str] = None
    content_types: list[ContentTemplate] = Field(min_length=1)
    platforms: list[Platform] = Field(default_factory=list)
    quality_threshold: int = Field(default=70, ge=0, le=100)
    auto_publish: bool = False
    notify_on_complete: bool = True

    @model_validator(mode="after")
    def _custom_needs_cron(self) -> "ScheduleConfig":
        if self.frequency == Frequency.CUSTOM and not self.cron_expression:
            raise ValueError("custom frequency requires cron_expression")
        if self.auto_publish and not self.platforms:
            raise ValueError("auto_publish requires at least one platform")
        return self


@dataclass
class Schedule:
    """Runtime record of a registered schedule. Owned by the Scheduler."""
    id: str
    config: ScheduleConfig
    cron_expression: str
    next_run: datetime
    created_at: datetime
    last_run: Optional[datetime] = None
    paused: bool = False
    runs: int = 0

    def to_info(self, active_batches: int = 0) -> "ScheduleInfo":
        return ScheduleInfo(
            id=self.id,
            config=self.config,
            cron_expression=self.cron_expression,
            next_run=self.next_run,
            last_run=self.last_run,
            paused=self.paused,
            runs=self.runs,
            active_batches=active_batches,
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "config": self.config.model_dump(mode="json"),
            "cron_expression": self.cron_expression,
            "next_run": self.next_run.isoformat(),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "paused": self.paused,
            "runs": self.runs,
        }


class ScheduleInfo(BaseModel):
    """Read-only view of a schedule."""
    model_config = ConfigDict(frozen=True)

    id: str
    config: ScheduleConfig
    cron_expression: str
    next_run: datetime
    last_run: Optional[datetime] = None
    paused: bool = False
    runs: int = 0
    active_batches: int = 0


@dataclass
class Batch:
    """Jobs created by one schedule tick."""
    schedule_id: str
    job_ids: list[str]
    created_at: datetime
    config: ScheduleConfig
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    error: Optional[str] = None

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "job_ids": list(self.job_ids),
            "created_at": self.created_at.isoformat(),
            "error": self.error,
        }


class BatchSummary(BaseModel):
    """Outcome of a resolved batch, handed to the notifier."""
    model_config = ConfigDict(frozen=True)

    batch_id: str
    schedule_id: str
    total: int
    completed: int
    failed: int
    cancelled: int = 0
    below_threshold: int = 0
    published: int = 0
    publish_failures: int = 0
    error: Optional[str] = None
    created_at: datetime
    resolved_at: datetime
