"""Gmail API client implementation.

This module provides a client for the two mailbox calls the pipeline needs:
listing message ids page by page and fetching one full message.

Notes:
    The Google API client is synchronous. This project wraps those calls using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
    Requests are authorized with the caller's OAuth access token; one service
    object is built and cached per token.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from inbox_synopsis.config import Settings
from inbox_synopsis.exceptions import (
    AuthError,
    MailboxConnectionError,
    PermissionDeniedError,
    RateLimitedError,
    TransientError,
)

logger = structlog.get_logger()

_MAX_CACHED_SERVICES = 16


@dataclass(frozen=True)
class MessageIdPage:
    """One page of message ids returned by ``users.messages.list``."""

    ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None


class GmailClient:
    """Gmail API client for token-authorized mailbox reads."""

    def __init__(
        self,
        settings: Settings | None = None,
        service_factory: Callable[[str], Any] | None = None,
    ) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
            service_factory: Builds a Gmail service for an access token. If
                None, the discovery-based ``googleapiclient`` service is used.
        """
        from inbox_synopsis.config import get_settings

        self.settings = settings or get_settings()
        self._service_factory = service_factory or self._build_service
        self._services: dict[str, Any] = {}
        logger.info("gmail_client_initialized")

    async def list_message_ids(
        self,
        token: str,
        page_token: str | None = None,
        page_size: int = 100,
        query: str | None = None,
    ) -> MessageIdPage:
        """List one page of message ids.

        Args:
            token: OAuth access token of the mailbox owner.
            page_token: Token of the page to fetch; None for the first page.
            page_size: Maximum number of ids to return.
            query: Gmail search query string.

        Returns:
            The ids on this page and the token of the next page, if any.

        Raises:
            AuthError: On 401.
            PermissionDeniedError: On 403.
            RateLimitedError: On 429.
            MailboxConnectionError: When the connection was reset.
            TransientError: On any other failure.
        """

        logger.info("listing_message_ids", page_size=page_size, query=query, page_token=page_token)

        try:
            response = await asyncio.to_thread(
                self._list_messages_sync, token, page_token, page_size, query
            )
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, "list_message_ids") from exc

        ids = [
            str(m["id"])
            for m in response.get("messages", []) or []
            if isinstance(m, dict) and m.get("id")
        ]
        return MessageIdPage(ids=ids, next_page_token=response.get("nextPageToken") or None)

    async def get_message(self, token: str, message_id: str, *, format: str = "full") -> dict[str, Any]:
        """Get a specific message by ID.

        Args:
            token: OAuth access token of the mailbox owner.
            message_id: The Gmail message ID.
            format: Gmail response format.

        Returns:
            Raw message dictionary.

        Raises:
            Same as :meth:`list_message_ids`.
        """

        logger.debug("getting_message", message_id=message_id, format=format)

        try:
            return await asyncio.to_thread(self._get_message_sync, token, message_id, format)
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, "get_message", message_id=message_id) from exc

    def _service(self, token: str) -> Any:
        service = self._services.get(token)
        if service is None:
            if len(self._services) >= _MAX_CACHED_SERVICES:
                self._services.clear()
            service = self._service_factory(token)
            self._services[token] = service
        return service

    def _build_service(self, token: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        creds = Credentials(token=token)
        # cache_discovery=False prevents writing discovery docs to disk.
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _list_messages_sync(
        self,
        token: str,
        page_token: str | None,
        page_size: int,
        query: str | None,
    ) -> dict[str, Any]:
        request = (
            self._service(token)
            .users()
            .messages()
            .list(userId="me", maxResults=page_size, q=query, pageToken=page_token)
        )
        return request.execute()

    def _get_message_sync(self, token: str, message_id: str, format: str) -> dict[str, Any]:
        request = self._service(token).users().messages().get(userId="me", id=message_id, format=format)
        return request.execute()

    @staticmethod
    def _translate_error(exc: Exception, operation: str, **context: Any) -> Exception:
        if isinstance(exc, ConnectionResetError):
            logger.warning("gmail_connection_reset", operation=operation, **context)
            return MailboxConnectionError(f"{operation}: connection reset")

        status = _http_status(exc)
        message = f"{operation} failed with status {status}: {exc}"
        if status == 401:
            return AuthError(message, status=status)
        if status == 403:
            return PermissionDeniedError(message, status=status)
        if status == 429:
            retry_after = _retry_after_ms(exc)
            logger.warning("gmail_rate_limited", operation=operation, retry_after_ms=retry_after, **context)
            return RateLimitedError(message, status=status, retry_after_ms=retry_after)

        logger.error("gmail_request_failed", operation=operation, status=status, error=str(exc), **context)
        return TransientError(message, status=status)


def _http_status(exc: Exception) -> int | None:
    status = getattr(getattr(exc, "resp", None), "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _retry_after_ms(exc: Exception) -> float | None:
    resp = getattr(exc, "resp", None)
    if resp is None or not hasattr(resp, "get"):
        return None
    value = resp.get("retry-after")
    try:
        return float(value) * 1000 if value is not None else None
    except (TypeError, ValueError):
        return None
