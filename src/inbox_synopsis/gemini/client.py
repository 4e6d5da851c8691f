"""Gemini client implementation.

Uses the ``google-genai`` SDK's async surface. Quota errors surface as
``google.genai.errors.APIError`` with ``code`` 429 and a ``details`` body whose
``error.details`` carry ``RetryInfo`` and ``QuotaFailure`` entries; they are
left for the synopsis generator to classify.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog
from google import genai
from google.genai import types

from inbox_synopsis.config import Settings
from inbox_synopsis.exceptions import ConfigurationError, LLMServiceError

logger = structlog.get_logger()


class GeminiClient:
    """Gemini LLM client for synopsis generation."""

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        """Initialize Gemini client.

        Args:
            settings: Application settings. If None, uses default settings.
            client_factory: Builds an SDK client for an API key. If None,
                ``genai.Client`` is used.
        """
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._client_factory = client_factory or self._build_client
        self._client: Any = None
        logger.info("gemini_client_initialized", model=self.settings.gemini_model)

    def _build_client(self, api_key: str) -> genai.Client:
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=self.settings.llm_timeout * 1000),
        )

    def _sdk(self) -> Any:
        if not self.settings.gemini_api_key:
            raise ConfigurationError("Gemini API key is not configured (INBOX_SYNOPSIS_GEMINI_API_KEY).")
        if self._client is None:
            self._client = self._client_factory(self.settings.gemini_api_key)
        return self._client

    async def generate(self, prompt: str, model: str | None = None) -> str:
        """Generate text for ``prompt``.

        Raises:
            ConfigurationError: If no API key is configured.
            google.genai.errors.APIError: If the API rejected the request.
            LLMServiceError: If the response carried no text.
        """

        client = self._sdk()
        model = model or self.settings.gemini_model
        logger.debug("generating_text", backend="gemini", model=model, prompt_length=len(prompt))

        response = await client.aio.models.generate_content(model=model, contents=prompt)

        text = response.text
        if not text:
            raise LLMServiceError("Gemini returned no text candidates")
        return text
