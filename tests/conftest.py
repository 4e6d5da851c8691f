"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from inbox_synopsis.config import Settings
from tests.fakes import TEST_KEY, FakeClock, FakeStore, gmail_message


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment, with fast delays."""
    return Settings(
        _env_file=None,
        gmail_token_path=tmp_path / "token.json",
        gmail_credentials_path=tmp_path / "credentials.json",
        store_db_path=tmp_path / "store.sqlite3",
        encryption_key=TEST_KEY,
        gemini_api_key="test-key",
        fetch_retry_base_delay=0.01,
        fetch_rate_limit_pause=0.01,
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sample_email_data() -> dict:
    """Provide a full-format Gmail message."""
    return gmail_message("msg123456")
