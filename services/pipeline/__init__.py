"""
Content Pipeline

Asset preparation -> post-processing -> quality assurance, with an advisory
quality gate on visual clarity.
"""

from .content_pipeline import (
    ContentPipeline,
    ProcessedAsset,
    QualityAnalyzer,
    StaticQualityAnalyzer,
)
from .models import PipelineOptions, PipelineResult, QualityMetrics

__all__ = [
    "ContentPipeline",
    "ProcessedAsset",
    "QualityAnalyzer",
    "StaticQualityAnalyzer",
    "PipelineOptions",
    "PipelineResult",
    "QualityMetrics",
]
