"""
Multi-Stage Content Pipeline

Takes the raw asset produced by a provider and drives it through:
1. Asset Preparation - resolution / metadata normalization, upscaling flag
2. AI Generation     - external, already done by the job queue + provider
3. Post-Processing   - color grading, subtitles, thumbnail candidates
4. Quality Assurance - five independent 0-100 scores

A single gate at the end flags results whose visual clarity is below the
threshold. The flag is advisory: the pipeline never retries and never raises
for low quality, the caller decides whether to re-enqueue.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from core.errors import InvalidRequest

from .models import PipelineOptions, PipelineResult, QualityMetrics

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_THRESHOLD = 70
DEFAULT_THUMBNAIL_COUNT = 10


@dataclass
class PreparedAsset:
    """Output of stage 1."""
    video_url: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessedAsset:
    """Output of stage 3."""
    video_url: str
    thumbnail_urls: list[str]
    subtitle_urls: dict[str, str]
    metadata: dict[str, Any] = field(default_factory=dict)


class QualityAnalyzer(Protocol):
    async def analyze(self, asset: ProcessedAsset) -> QualityMetrics:
        ...


class StaticQualityAnalyzer:
    """
    Returns fixed scores.

    Stand-in for the model-backed analyzers (clarity, audio balance, brand
    check, NSFW/copyright scan, virality prediction).
    """

    DEFAULT_METRICS = QualityMetrics(
        visual_clarity=85,
        audio_balance=90,
        brand_consistency=95,
        copyright_safety=100,
        engagement_prediction=78,
    )

    def __init__(self, metrics: Optional[QualityMetrics] = None):
        self.metrics = metrics or self.DEFAULT_METRICS

    async def analyze(self, asset: ProcessedAsset) -> QualityMetrics:
        return self.metrics


class ContentPipeline:
    """
    Post-generation pipeline with a quality gate.

    Usage:
        pipeline = ContentPipeline(quality_threshold=70)
        result = await pipeline.run(
            "https://storage.scrollsoul.com/videos/abc.mp4",
            PipelineOptions(upscale=True, add_subtitles=True),
        )
        if result.below_threshold:
            ...  # caller decides whether to regenerate
    """

    def __init__(
        self,
        quality_threshold: int = DEFAULT_QUALITY_THRESHOLD,
        analyzer: Optional[QualityAnalyzer] = None,
        thumbnail_count: int = DEFAULT_THUMBNAIL_COUNT,
        watermark: str = "ScrollSoul",
    ):
        if not 0 <= quality_threshold <= 100:
            raise InvalidRequest(f"quality_threshold must be 0-100, got {quality_threshold}")
        self.quality_threshold = quality_threshold
        self.analyzer = analyzer or StaticQualityAnalyzer()
        self.thumbnail_count = thumbnail_count
        self.watermark = watermark

    async def run(
        self,
        asset_url: str,
        options: Optional[PipelineOptions] = None,
        job_id: Optional[str] = None,
        quality_threshold: Optional[int] = None,
    ) -> PipelineResult:
        """
        Run every stage in order and apply the quality gate.

        Args:
            asset_url: Raw asset URL from the provider
            options: Processing switches
            job_id: Job the asset belongs to
            quality_threshold: Override the pipeline default for this run

        Returns:
            PipelineResult, tagged ``below_threshold`` when visual clarity
            misses the threshold
        """
        if not asset_url:
            raise InvalidRequest("Content pipeline needs a non-empty asset URL")

        options = options or PipelineOptions()
        threshold = self.quality_threshold if quality_threshold is None else quality_threshold
        started = time.monotonic()

        prepared = await self._prepare_asset(asset_url, options)
        processed = await self._post_process(prepared, options)
        metrics = await self._quality_assurance(processed)

        below_threshold = metrics.visual_clarity < threshold
        if below_threshold:
            logger.warning(
                f"Job {job_id}: visual clarity {metrics.visual_clarity} below "
                f"threshold {threshold}, flagged for regeneration"
            )

        return PipelineResult(
            job_id=job_id,
            video_url=processed.video_url,
            thumbnail_urls=processed.thumbnail_urls,
            subtitle_urls=processed.subtitle_urls,
            metadata=processed.metadata,
            quality_metrics=metrics,
            quality_threshold=threshold,
            below_threshold=below_threshold,
            processing_seconds=round(time.monotonic() - started, 3),
        )

    async def _prepare_asset(self, asset_url: str, options: PipelineOptions) -> PreparedAsset:
        """Stage 1: normalize resolution and attach brand metadata."""
        return PreparedAsset(
            video_url=asset_url,
            metadata={
                "resolution": "4K" if options.upscale else "1080p",
                "upscaled": options.upscale,
                "watermark": self.watermark,
                "dominant_colors": ["#C9A075", "#FFD700"],  # Rose gold
            },
        )

    async def _post_process(self, prepared: PreparedAsset, options: PipelineOptions) -> ProcessedAsset:
        """Stage 3: color treatment, subtitles, thumbnail candidates."""
        base = prepared.video_url.rsplit(".mp4", 1)[0]
        count = options.thumbnail_count or self.thumbnail_count

        subtitles = {}
        if options.add_subtitles:
            subtitles = {lang: f"{prepared.video_url}.{lang}.srt" for lang in options.subtitle_languages}

        return ProcessedAsset(
            video_url=prepared.video_url,
            thumbnail_urls=[f"{base}-thumb-{i}.jpg" for i in range(count)],
            subtitle_urls=subtitles,
            metadata={
                **prepared.metadata,
                "color_graded": options.color_grade,
                "color_style": options.color_style if options.color_grade else None,
                "subtitles": sorted(subtitles),
                "thumbnail_variants": count,
            },
        )

    async def _quality_assurance(self, processed: ProcessedAsset) -> QualityMetrics:
        """Stage 4: compute the five quality scores."""
        return await self.analyzer.analyze(processed)
