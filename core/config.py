"""
Configuration management for the content orchestrator.

Centralizes all configuration including:
- Job queue limits, retry and timeout policy
- Provider endpoints and the fallback order
- Scheduler cadence and quality gate defaults
- Optional persistence and notification endpoints
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class QueueConfig:
    """Job queue dispatch and retry policy."""

    concurrency: int = field(default_factory=lambda: _env_int("QUEUE_CONCURRENCY", 4))
    max_retries: int = field(default_factory=lambda: _env_int("QUEUE_MAX_RETRIES", 3))

    # Exponential backoff: base_delay * 2^retry_count, capped at max_delay
    base_delay: float = field(default_factory=lambda: _env_float("QUEUE_BASE_DELAY", 5.0))
    max_delay: float = field(default_factory=lambda: _env_float("QUEUE_MAX_DELAY", 300.0))

    poll_interval: float = field(default_factory=lambda: _env_float("QUEUE_POLL_INTERVAL", 10.0))
    job_timeout: float = field(default_factory=lambda: _env_float("QUEUE_JOB_TIMEOUT", 600.0))  # 10 min

    # Simultaneous dispatched jobs per provider (rate limit)
    per_provider_limit: int = field(default_factory=lambda: _env_int("PROVIDER_CONCURRENCY", 2))


@dataclass
class ProviderConfig:
    """Media provider endpoints and fallback order."""

    # Aggregator API (Kie AI market API)
    kie_api_key: str = field(default_factory=lambda: os.getenv("KIE_API_KEY", ""))
    kie_api_base: str = field(
        default_factory=lambda: os.getenv("KIE_API_BASE", "https://api.kie.ai/api/v1")
    )

    # Each provider falls back to the next one, the last wraps to the first
    fallback_order: list[str] = field(default_factory=lambda: [
        name.strip()
        for name in os.getenv("PROVIDER_FALLBACK_ORDER", "sora,runway,domoai,kling").split(",")
        if name.strip()
    ])

    # Seconds allowed for a single submit/poll call
    call_timeout: float = field(default_factory=lambda: _env_float("PROVIDER_CALL_TIMEOUT", 30.0))


@dataclass
class PipelineConfig:
    """Content pipeline defaults."""

    quality_threshold: int = field(default_factory=lambda: _env_int("QUALITY_THRESHOLD", 70))
    thumbnail_count: int = field(default_factory=lambda: _env_int("THUMBNAIL_COUNT", 10))


@dataclass
class SchedulerConfig:
    """Scheduler loop settings."""

    tick_interval: float = field(default_factory=lambda: _env_float("SCHEDULER_TICK_INTERVAL", 10.0))
    notify_webhook_url: str = field(default_factory=lambda: os.getenv("NOTIFY_WEBHOOK_URL", ""))


@dataclass
class DatabaseConfig:
    """Optional durable state store."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass
class Config:
    """Main configuration class."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if self.queue.concurrency < 1:
            issues.append("QUEUE_CONCURRENCY must be at least 1")

        if self.queue.per_provider_limit < 1:
            issues.append("PROVIDER_CONCURRENCY must be at least 1")

        if self.queue.max_retries < 0:
            issues.append("QUEUE_MAX_RETRIES cannot be negative")

        if self.queue.base_delay < 0 or self.queue.max_delay < self.queue.base_delay:
            issues.append("QUEUE_BASE_DELAY must be >= 0 and <= QUEUE_MAX_DELAY")

        if not 0 <= self.pipeline.quality_threshold <= 100:
            issues.append("QUALITY_THRESHOLD must be between 0 and 100")

        if len(self.providers.fallback_order) < 2:
            issues.append("PROVIDER_FALLBACK_ORDER needs at least two providers")

        if len(set(self.providers.fallback_order)) != len(self.providers.fallback_order):
            issues.append("PROVIDER_FALLBACK_ORDER contains duplicates")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
