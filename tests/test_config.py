"""
Environment-driven configuration.
"""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config, QueueConfig, get_config, reload_config

ENV_VARS = [
    "QUEUE_CONCURRENCY",
    "QUEUE_MAX_RETRIES",
    "PROVIDER_FALLBACK_ORDER",
    "QUALITY_THRESHOLD",
]


class TestConfig:

    def setup_method(self):
        """Clean up environment before each test."""
        for name in ENV_VARS:
            os.environ.pop(name, None)

    def teardown_method(self):
        """Clean up environment after each test."""
        for name in ENV_VARS:
            os.environ.pop(name, None)
        reload_config()

    def test_defaults(self):
        config = Config.from_env()

        assert config.queue.concurrency == 4
        assert config.queue.max_retries == 3
        assert config.queue.base_delay == 5.0
        assert config.providers.fallback_order == ["sora", "runway", "domoai", "kling"]
        assert config.pipeline.quality_threshold == 70
        assert config.validate() == []

    def test_reads_environment(self):
        os.environ["QUEUE_CONCURRENCY"] = "8"
        os.environ["PROVIDER_FALLBACK_ORDER"] = "kling, sora"

        config = Config.from_env()

        assert config.queue.concurrency == 8
        assert config.providers.fallback_order == ["kling", "sora"]

    def test_validate_reports_issues(self):
        os.environ["QUEUE_CONCURRENCY"] = "0"
        os.environ["PROVIDER_FALLBACK_ORDER"] = "sora"
        os.environ["QUALITY_THRESHOLD"] = "150"

        issues = Config.from_env().validate()

        assert len(issues) == 3
        assert any("QUEUE_CONCURRENCY" in issue for issue in issues)
        assert any("QUALITY_THRESHOLD" in issue for issue in issues)
        assert any("PROVIDER_FALLBACK_ORDER" in issue for issue in issues)

    def test_reload(self):
        first = get_config()
        os.environ["QUEUE_MAX_RETRIES"] = "5"

        assert get_config() is first
        reload_config()
        assert get_config().queue.max_retries == 5

    def test_explicit_values_override_environment(self):
        os.environ["QUEUE_CONCURRENCY"] = "8"

        assert QueueConfig(concurrency=2).concurrency == 2
