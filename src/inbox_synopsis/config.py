"""Configuration management for Inbox Synopsis.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the INBOX_SYNOPSIS_ prefix (e.g., INBOX_SYNOPSIS_GEMINI_API_KEY).
    """

    model_config = SettingsConfigDict(
        env_prefix="INBOX_SYNOPSIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API OAuth client secrets file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to the stored Gmail OAuth token",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access",
    )
    gmail_query: str | None = Field(
        default="newer_than:3d",
        description="Gmail search query applied when listing message ids",
    )
    gmail_page_size: int = Field(
        default=100,
        description="Default number of message ids fetched per page",
    )
    gmail_max_page_size: int = Field(
        default=200,
        description="Upper bound applied to caller-supplied page sizes",
    )

    # Mailbox fetching
    fetch_concurrency: int = Field(
        default=10,
        description="Initial number of concurrent full-message fetches",
    )
    fetch_max_retries: int = Field(
        default=3,
        description="Retries for a mailbox call on 429 or connection reset",
    )
    fetch_retry_base_delay: float = Field(
        default=0.5,
        description="First retry delay in seconds for mailbox calls (doubles each retry)",
    )
    fetch_rate_limit_pause: float = Field(
        default=1.0,
        description="Pause in seconds after a 429 shrinks the fetch pool",
    )
    fetch_max_requeues: int = Field(
        default=3,
        description="How many times a rate-limited message id may be re-queued in the fetch pool",
    )

    # LLM Configuration
    llm_provider: Literal["gemini", "ollama"] = Field(
        default="gemini",
        description="LLM backend used for synopsis generation",
    )
    gemini_api_key: str | None = Field(
        default=None,
        description="API key for the Gemini generateContent endpoint",
    )
    gemini_model: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model name",
    )
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama API host URL",
    )
    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model to use for inference",
    )
    llm_timeout: int = Field(
        default=60,
        description="Timeout for LLM requests in seconds",
    )
    max_tokens_per_email: int = Field(
        default=100_000,
        description="Estimated token ceiling above which a message is skipped",
    )

    # Adaptive batch scheduler
    scheduler_concurrency: int = Field(
        default=3,
        description="Number of synopsis calls run concurrently per group",
    )
    base_group_delay: float = Field(
        default=0.5,
        description="Base delay in seconds between scheduling groups",
    )
    base_item_delay: float = Field(
        default=0.2,
        description="Base stagger in seconds between items started within a group",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        description="Factor applied to delays on rate limits (and divided out on success)",
    )
    max_delay: float = Field(
        default=60.0,
        description="Ceiling in seconds for adaptive delays",
    )
    inline_threshold: int = Field(
        default=4,
        description="Batches at or below this size are processed inline",
    )

    # Background queue
    queue_capacity: int = Field(default=1000, description="Maximum number of queued messages")
    queue_batch_size: int = Field(default=5, description="Messages taken per drain cycle")
    queue_max_retries: int = Field(default=3, description="Attempts before a queued message is dropped")
    queue_base_retry_delay: float = Field(
        default=60.0,
        description="Base retry delay in seconds for failed queued messages",
    )
    queue_max_retry_delay: float = Field(
        default=300.0,
        description="Ceiling in seconds for queued message retry delays",
    )
    queue_rate_limit_retry_floor: float = Field(
        default=300.0,
        description="Minimum retry delay in seconds after a rate-limit failure",
    )
    queue_drain_interval: float = Field(default=5.0, description="Seconds between drain cycles")
    queue_stats_interval: float = Field(default=60.0, description="Seconds between stats log lines")

    # Persistence
    store_db_path: Path = Field(
        default=Path("synopsis_store.sqlite3"),
        description="Path to the SQLite document store holding encrypted synopses",
    )
    encryption_key: str | None = Field(
        default=None,
        description="32-byte AES key encoded as base64, hex or utf-8",
    )
    owner_id: str = Field(
        default="me",
        description="Identifier of the local mailbox owner",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
