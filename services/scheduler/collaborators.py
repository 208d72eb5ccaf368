"""
Downstream collaborators invoked when a batch resolves.

Publisher hands an accepted asset to a platform; Notifier announces batch
outcomes. Both live outside the orchestration core, these are the contracts
plus the implementations bundled for local runs.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from services.pipeline.models import PipelineResult

from .models import BatchSummary, Platform

logger = logging.getLogger(__name__)


@dataclass
class PublishOutcome:
    """Result from a publish operation."""
    success: bool
    platform: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class Publisher(Protocol):
    async def publish(self, asset: PipelineResult, platform: Platform) -> PublishOutcome:
        ...


class Notifier(Protocol):
    async def notify(self, summary: BatchSummary) -> None:
        ...


class LoggingPublisher:
    """Records publish requests instead of calling platform APIs."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, asset: PipelineResult, platform: Platform) -> PublishOutcome:
        logger.info(f"Publishing to {platform.value}: {asset.video_url}")
        self.published.append((platform.value, asset.video_url))
        return PublishOutcome(success=True, platform=platform.value, url=asset.video_url)


class LoggingNotifier:
    """Writes batch summaries to the log."""

    def __init__(self):
        self.summaries: list[BatchSummary] = []

    async def notify(self, summary: BatchSummary) -> None:
        self.summaries.append(summary)
        logger.info(
            f"Schedule {summary.schedule_id} batch {summary.batch_id}: "
            f"{summary.completed} completed, {summary.failed} failed"
            + (f", {summary.cancelled} cancelled" if summary.cancelled else "")
            + (f", {summary.published} published" if summary.published else "")
        )


class WebhookNotifier:
    """
    POSTs batch summaries as JSON to a webhook.

    Usage:
        notifier = WebhookNotifier("https://hooks.example.com/batches")
    """

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.url = url
        self._client = client
        self._timeout = timeout

    async def notify(self, summary: BatchSummary) -> None:
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            response = await client.post(self.url, json=summary.model_dump(mode="json"))
            response.raise_for_status()
        finally:
            if self._client is None:
                await client.aclose()
        logger.info(f"Batch {summary.batch_id} summary delivered to webhook")
