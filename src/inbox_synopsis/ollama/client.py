"""Ollama client implementation.

This module provides a client for generating synopsis text with a local
Ollama model.
"""

import asyncio
from typing import Optional

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.exceptions import LLMServiceError
from inbox_synopsis.utils.http import post_json

logger = structlog.get_logger()


class OllamaClient:
    """Ollama LLM client for AI inference.

    This client handles communication with the Ollama ``/api/generate``
    endpoint. The HTTP call is blocking, so it runs in a worker thread.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Ollama client.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        logger.info(
            "ollama_client_initialized",
            host=self.settings.ollama_host,
            model=self.settings.ollama_model,
        )

    async def generate(self, prompt: str, model: Optional[str] = None) -> str:
        """Generate text using Ollama.

        Args:
            prompt: The prompt to send to the model.
            model: Model name to use. If None, uses default from settings.

        Returns:
            The generated text.

        Raises:
            LLMServiceError: If the request fails or Ollama is unreachable.
        """
        model = model or self.settings.ollama_model
        logger.debug("generating_text", backend="ollama", model=model, prompt_length=len(prompt))

        data = await asyncio.to_thread(
            post_json,
            f"{self.settings.ollama_host.rstrip('/')}/api/generate",
            {"model": model, "prompt": prompt, "stream": False},
            timeout=self.settings.llm_timeout,
            label="Ollama",
        )

        if data.get("error"):
            raise LLMServiceError(f"Ollama error: {data['error']}", payload=data)
        return str(data.get("response") or "").strip()
