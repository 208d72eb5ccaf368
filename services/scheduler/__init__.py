"""
Scheduler

Recurring content batches: cadence evaluation, batch monitoring and the
publish / notify post-actions that run once per resolved batch.
"""

from .cadence import CRON_PRESETS, next_run_after, resolve_cron
from .collaborators import (
    LoggingNotifier,
    LoggingPublisher,
    Notifier,
    PublishOutcome,
    Publisher,
    WebhookNotifier,
)
from .models import (
    BatchSummary,
    ContentTemplate,
    Frequency,
    Platform,
    ScheduleConfig,
    ScheduleInfo,
)
from .scheduler import Scheduler

__all__ = [
    "CRON_PRESETS",
    "next_run_after",
    "resolve_cron",
    "LoggingNotifier",
    "LoggingPublisher",
    "Notifier",
    "PublishOutcome",
    "Publisher",
    "WebhookNotifier",
    "BatchSummary",
    "ContentTemplate",
    "Frequency",
    "Platform",
    "ScheduleConfig",
    "ScheduleInfo",
    "Scheduler",
]
