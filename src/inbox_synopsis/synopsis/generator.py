"""Synopsis Generator: one prompt, one LLM call, parse, persist."""

from __future__ import annotations

from typing import Protocol

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.models import NormalizedMessage, SynopsisResult
from inbox_synopsis.synopsis.parser import parse_synopsis_response
from inbox_synopsis.synopsis.prompt import build_synopsis_prompt, estimate_tokens
from inbox_synopsis.synopsis.quota import classify_llm_error

logger = structlog.get_logger()


class LLMService(Protocol):
    """Anything that turns a prompt into free-form text."""

    async def generate(self, prompt: str) -> str: ...


class SynopsisWriter(Protocol):
    async def persist(self, message: NormalizedMessage, synopsis: SynopsisResult, owner_id: str) -> None: ...


class SynopsisGenerator:
    """Produces and persists the synopsis of a single message.

    ``generate`` returns None for messages that are skipped (body over the
    token ceiling, or a response with no recoverable sections). Failures of
    the LLM call are raised as ``RateLimitedError``, ``AuthError`` or
    ``TransientError``; persistence failures propagate unchanged.
    """

    def __init__(self, llm: LLMService, writer: SynopsisWriter, settings: Settings | None = None) -> None:
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._llm = llm
        self._writer = writer

    async def generate(self, message: NormalizedMessage, owner_id: str) -> SynopsisResult | None:
        """Generate, persist and return the synopsis for ``message``.

        Args:
            message: The message to summarize.
            owner_id: Owner the persisted record belongs to.

        Returns:
            The synopsis, or None when the message was skipped.

        Raises:
            RateLimitedError: The LLM reported quota exhaustion or 503.
            AuthError: The LLM rejected the credentials.
            TransientError: Any other LLM failure.
            StoreError: The record could not be written.
            EncryptionError: A field could not be encrypted.
        """

        tokens = estimate_tokens(message.body)
        if tokens > self.settings.max_tokens_per_email:
            logger.warning(
                "synopsis_skipped_token_limit",
                message_id=message.id,
                token_count=tokens,
                limit=self.settings.max_tokens_per_email,
            )
            return None

        prompt = build_synopsis_prompt(message)
        try:
            content = await self._llm.generate(prompt)
        except Exception as exc:
            classified = classify_llm_error(exc)
            logger.error(
                "synopsis_llm_call_failed",
                message_id=message.id,
                error_kind=classified.kind,
                status=classified.status,
                error=str(exc),
            )
            if classified is exc:
                raise
            raise classified from exc

        synopsis = parse_synopsis_response(content, message.id)
        if synopsis is None:
            return None

        await self._writer.persist(message, synopsis, owner_id)
        logger.info(
            "synopsis_generated",
            message_id=message.id,
            urgency_score=synopsis.urgency_score,
            classification=synopsis.classification,
        )
        return synopsis
