"""Mailbox fetcher: paginated id listing and normalized full-message retrieval."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.exceptions import (
    AuthError,
    MailboxConnectionError,
    PermissionDeniedError,
    RateLimitedError,
)
from inbox_synopsis.gmail.client import GmailClient, MessageIdPage
from inbox_synopsis.gmail.parsing import message_to_normalized
from inbox_synopsis.models import NormalizedMessage
from inbox_synopsis.utils import retry_on_failure
from inbox_synopsis.utils.concurrency import AdaptiveConcurrencyPool

logger = structlog.get_logger()

_RETRYABLE = (RateLimitedError, MailboxConnectionError)


class MailboxFetcher:
    """Lists and retrieves mailbox messages, retrying transient failures.

    Each mailbox call is retried on 429 and connection resets with a doubling
    delay. Full-message fetches run through an adaptive pool: once a call is
    still rate limited after its retries, the pool halves its concurrency and
    puts the id back in line; any other per-id failure (including a malformed
    MIME tree) drops only that id.
    """

    def __init__(
        self,
        client: GmailClient,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._client = client
        self._sleep = sleep
        self.last_pool: AdaptiveConcurrencyPool[str, NormalizedMessage] | None = None

    def _with_retry(self, func: Callable[..., Awaitable]) -> Callable[..., Awaitable]:
        return retry_on_failure(
            max_retries=self.settings.fetch_max_retries,
            delay=self.settings.fetch_retry_base_delay,
            backoff=2.0,
            retry_on=_RETRYABLE,
            sleep=self._sleep,
        )(func)

    async def list_message_ids(
        self,
        token: str,
        page_token: str | None = None,
        page_size: int | None = None,
    ) -> MessageIdPage:
        """Fetch one page of message ids.

        Raises:
            AuthError: The token is invalid or expired.
            PermissionDeniedError: The token lacks mailbox access.
            RateLimitedError: Still rate limited after all retries.
        """

        size = min(page_size or self.settings.gmail_page_size, self.settings.gmail_max_page_size)
        page = await self._with_retry(self._client.list_message_ids)(
            token,
            page_token=page_token,
            page_size=size,
            query=self.settings.gmail_query,
        )
        logger.info("message_ids_listed", count=len(page.ids), has_next_page=bool(page.next_page_token))
        return page

    async def fetch_full_messages(self, ids: list[str], token: str) -> list[NormalizedMessage]:
        """Fetch and normalize the given messages, in the order of ``ids``.

        Ids that fail for reasons other than quota are left out. Auth and
        permission failures abort the whole call.
        """

        pool: AdaptiveConcurrencyPool[str, NormalizedMessage] = AdaptiveConcurrencyPool(
            self.settings.fetch_concurrency,
            is_quota_error=lambda exc: isinstance(exc, RateLimitedError),
            is_fatal_error=lambda exc: isinstance(exc, (AuthError, PermissionDeniedError)),
            rate_limit_pause=self.settings.fetch_rate_limit_pause,
            max_requeues=self.settings.fetch_max_requeues,
            sleep=self._sleep,
        )
        self.last_pool = pool
        get_message = self._with_retry(self._client.get_message)

        async def fetch_one(message_id: str) -> NormalizedMessage:
            raw = await get_message(token, message_id)
            return message_to_normalized(raw)

        messages = await pool.map(list(dict.fromkeys(ids)), fetch_one)
        logger.info("full_messages_fetched", requested=len(ids), fetched=len(messages))
        return messages
