"""Unit tests for configuration module."""

import pytest

from inbox_synopsis.config import Settings, get_settings


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self) -> None:
        """Test that defaults match the pipeline constants."""
        settings = Settings(_env_file=None)

        assert settings.llm_provider == "gemini"
        assert settings.gmail_query == "newer_than:3d"
        assert settings.gmail_max_page_size == 200
        assert settings.scheduler_concurrency == 3
        assert settings.base_group_delay == 0.5
        assert settings.base_item_delay == 0.2
        assert settings.backoff_multiplier == 2.0
        assert settings.max_delay == 60.0
        assert settings.inline_threshold == 4
        assert settings.queue_capacity == 1000
        assert settings.queue_batch_size == 5
        assert settings.queue_max_retries == 3
        assert settings.queue_rate_limit_retry_floor == 300.0
        assert settings.max_tokens_per_email == 100_000
        assert settings.log_level == "INFO"
        assert settings.debug is False

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("INBOX_SYNOPSIS_LLM_PROVIDER", "ollama")
        monkeypatch.setenv("INBOX_SYNOPSIS_QUEUE_CAPACITY", "10")
        monkeypatch.setenv("INBOX_SYNOPSIS_DEBUG", "true")

        # Clear the cache to ensure fresh settings
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.llm_provider == "ollama"
        assert settings.queue_capacity == 10
        assert settings.debug is True

        # Clean up
        get_settings.cache_clear()

    def test_invalid_provider_rejected(self) -> None:
        """Test that an unknown LLM provider fails validation."""
        with pytest.raises(ValueError):
            Settings(_env_file=None, llm_provider="openai")

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        # Clean up
        get_settings.cache_clear()
