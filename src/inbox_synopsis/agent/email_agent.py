"""Email synopsis agent implementation.

This module provides the agent that wires the ingestion pipeline together
and owns the background queue lifecycle.
"""

from __future__ import annotations

from typing import Any

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.gmail.client import GmailClient
from inbox_synopsis.gmail.fetcher import MailboxFetcher
from inbox_synopsis.identity import IdentityProvider, TokenFileIdentityProvider
from inbox_synopsis.models import (
    BatchOutcome,
    IngestResult,
    NormalizedMessage,
    ProcessingError,
    QueueStats,
)
from inbox_synopsis.pipeline import (
    AdaptiveBatchScheduler,
    BackgroundQueue,
    Deduplicator,
    DocumentStore,
    PersistenceWriter,
)
from inbox_synopsis.security import FieldEncryptor
from inbox_synopsis.store import SynopsisRepository
from inbox_synopsis.synopsis import LLMService, SynopsisGenerator
from inbox_synopsis.utils.clock import Clock, SystemClock

logger = structlog.get_logger()


def build_llm(settings: Settings) -> LLMService:
    """Instantiate the configured LLM backend."""

    if settings.llm_provider == "ollama":
        from inbox_synopsis.ollama.client import OllamaClient

        return OllamaClient(settings)

    from inbox_synopsis.gemini.client import GeminiClient

    return GeminiClient(settings)


def _outcome_errors(outcome: BatchOutcome) -> list[ProcessingError]:
    errors = [
        ProcessingError(
            message_id=failure.message.id,
            kind=getattr(failure.error, "kind", "error"),
            detail=str(failure.error),
        )
        for failure in outcome.failed
    ]
    errors.extend(
        ProcessingError(message_id=m.id, kind="skipped", detail="No synopsis produced") for m in outcome.skipped
    )
    errors.extend(
        ProcessingError(message_id=m.id, kind="deferred", detail=f"Not attempted: run {outcome.state.value}")
        for m in outcome.pending
    )
    return errors


class EmailAgent:
    """Inbox synopsis agent.

    This agent coordinates mailbox fetching, deduplication, synopsis
    generation and persistence. Small batches are processed inline; larger
    ones are handed to the background queue, which ``start()`` and
    ``shutdown()`` control.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        gmail_client: GmailClient | None = None,
        llm: LLMService | None = None,
        store: DocumentStore | None = None,
        encryptor: FieldEncryptor | None = None,
        identity: IdentityProvider | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            settings: Application settings. If None, uses default settings.
            gmail_client: Mailbox API client. If None, creates a new one.
            llm: LLM backend. If None, builds the one named by ``llm_provider``.
            store: Document store. If None, opens the SQLite store.
            encryptor: Field encryptor. If None, uses ``encryption_key``.
            identity: Identity provider. If None, reads the Gmail token file.
            clock: Time source for the scheduler and queue.

        Raises:
            EncryptionError: If no encryptor is given and the key is unusable.
        """
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        clock = clock or SystemClock()

        self.repository = SynopsisRepository(self.settings.store_db_path) if store is None else None
        self.store: DocumentStore = store if store is not None else self.repository  # type: ignore[assignment]
        self.identity = identity or TokenFileIdentityProvider(self.settings)
        self.fetcher = MailboxFetcher(gmail_client or GmailClient(self.settings), self.settings)
        self.deduplicator = Deduplicator(self.store)

        writer = PersistenceWriter(
            self.store,
            encryptor or FieldEncryptor.from_setting(self.settings.encryption_key),
            clock,
        )
        generator = SynopsisGenerator(llm or build_llm(self.settings), writer, self.settings)
        self.scheduler = AdaptiveBatchScheduler(generator, self.settings, clock)
        self.queue = BackgroundQueue(self.scheduler, self.deduplicator, self.settings, clock)
        logger.info("email_agent_initialized", llm_provider=self.settings.llm_provider)

    async def start(self) -> None:
        """Prepare the store and start draining the background queue."""

        if self.repository is not None:
            self.repository.initialize()
        self.queue.start()

    async def shutdown(self) -> None:
        """Stop the background queue, letting an in-flight drain finish."""

        await self.queue.shutdown()

    async def __aenter__(self) -> "EmailAgent":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def queue_stats(self) -> QueueStats:
        return self.queue.stats()

    async def ingest_and_process(
        self,
        token: str,
        page_size: int | None = None,
        page_token: str | None = None,
        *,
        owner_id: str,
    ) -> IngestResult:
        """Fetch one page of the mailbox and synopsize its new messages.

        Args:
            token: Mailbox access token.
            page_size: Messages per page; clamped to ``gmail_max_page_size``.
            page_token: Continuation token from a previous call.
            owner_id: Owner the synopses are stored under.

        Returns:
            IngestResult. Inline runs fill ``messages``, ``processing_errors``
            and ``rate_limit_info``; queued runs fill ``queue_stats`` and
            ``enqueued``.

        Raises:
            AuthError: The mailbox token is invalid or expired.
            PermissionDeniedError: The token lacks mailbox access.
            RateLimitedError: Listing was still rate limited after retries.
        """

        logger.info("ingest_started", owner_id=owner_id, page_size=page_size, has_page_token=bool(page_token))

        page = await self.fetcher.list_message_ids(token, page_token=page_token, page_size=page_size)
        messages = await self.fetcher.fetch_full_messages(page.ids, token)
        fresh = await self.deduplicator.filter_new(messages)

        if len(fresh) <= self.settings.inline_threshold:
            return await self._process_inline(fresh, owner_id, page.next_page_token)
        return self._enqueue(fresh, owner_id, page.next_page_token)

    async def ingest_for_current_user(
        self,
        page_size: int | None = None,
        page_token: str | None = None,
    ) -> IngestResult:
        """Resolve the caller, then run :meth:`ingest_and_process` for them.

        Raises:
            UnauthenticatedError: No usable stored credentials.
        """

        caller = await self.identity.current_user()
        return await self.ingest_and_process(
            caller.mailbox_token,
            page_size,
            page_token,
            owner_id=caller.id,
        )

    async def _process_inline(
        self,
        messages: list[NormalizedMessage],
        owner_id: str,
        next_page_token: str | None,
    ) -> IngestResult:
        outcome = await self.scheduler.run(messages, owner_id)
        errors = _outcome_errors(outcome)
        logger.info(
            "ingest_completed_inline",
            processed=len(outcome.successful),
            errors=len(errors),
            state=outcome.state.value,
        )
        return IngestResult(
            messages=outcome.successful,
            next_page_token=next_page_token,
            processing_errors=errors or None,
            rate_limit_info=outcome.quota_info,
        )

    def _enqueue(
        self,
        messages: list[NormalizedMessage],
        owner_id: str,
        next_page_token: str | None,
    ) -> IngestResult:
        enqueued = self.queue.enqueue(messages, owner_id)
        errors = [
            ProcessingError(message_id=message_id, kind="queue_full", detail="Background queue is at capacity")
            for message_id in enqueued.rejected_ids
        ]
        logger.info("ingest_queued", accepted=enqueued.accepted, rejected=enqueued.rejected)
        return IngestResult(
            next_page_token=next_page_token,
            processing_errors=errors or None,
            queue_stats=self.queue.stats(),
            enqueued=enqueued,
        )
