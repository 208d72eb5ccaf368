"""
Content pipeline value types.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class QualityMetrics(BaseModel):
    """Five independent 0-100 quality scores."""
    model_config = ConfigDict(frozen=True)

    visual_clarity: int = Field(ge=0, le=100)
    audio_balance: int = Field(ge=0, le=100)
    brand_consistency: int = Field(ge=0, le=100)
    copyright_safety: int = Field(ge=0, le=100)
    engagement_prediction: int = Field(ge=0, le=100)  # ML-based virality score


class PipelineOptions(BaseModel):
    """Per-asset processing switches."""
    model_config = ConfigDict(frozen=True)

    upscale: bool = False
    color_grade: bool = True
    color_style: str = "rose-gold"
    add_subtitles: bool = False
    subtitle_languages: list[str] = Field(default_factory=lambda: ["en", "es", "fr"])
    thumbnail_count: Optional[int] = Field(default=None, ge=1, le=50)


class PipelineResult(BaseModel):
    """Immutable outcome of one pipeline run."""
    model_config = ConfigDict(frozen=True)

    job_id: Optional[str] = None
    video_url: str
    thumbnail_urls: list[str] = Field(default_factory=list)
    subtitle_urls: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    quality_metrics: QualityMetrics
    quality_threshold: int
    below_threshold: bool = False
    processing_seconds: float = 0.0

    @property
    def thumbnail_url(self) -> Optional[str]:
        return self.thumbnail_urls[0] if self.thumbnail_urls else None
