"""Custom exceptions for Inbox Synopsis.

Every error raised by the pipeline is one of the classes below. Each carries a
``kind`` tag so callers can branch on a closed set of values instead of probing
optional attributes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from inbox_synopsis.models import QuotaInfo


class InboxSynopsisError(Exception):
    """Base exception for all Inbox Synopsis errors."""

    kind = "error"


class ConfigurationError(InboxSynopsisError):
    """Exception raised for configuration related errors."""

    kind = "configuration"


class UnauthenticatedError(InboxSynopsisError):
    """No active session or stored credentials for the caller."""

    kind = "unauthenticated"


class AuthError(InboxSynopsisError):
    """Mailbox or LLM credentials were rejected (401)."""

    kind = "auth"

    def __init__(self, message: str, status: int | None = 401) -> None:
        super().__init__(message)
        self.status = status


class PermissionDeniedError(InboxSynopsisError):
    """Access to the mailbox is insufficient (403)."""

    kind = "permission"

    def __init__(self, message: str, status: int | None = 403) -> None:
        super().__init__(message)
        self.status = status


class RateLimitedError(InboxSynopsisError):
    """Quota exhausted or service temporarily unavailable (429/503)."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = 429,
        retry_after_ms: float | None = None,
        quota: QuotaInfo | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.quota = quota


class TransientError(InboxSynopsisError):
    """Any other failure of an external call that may succeed later."""

    kind = "transient"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MailboxConnectionError(TransientError):
    """The connection to the mailbox API was reset."""


class ParseError(InboxSynopsisError):
    """An LLM response could not be decoded into a synopsis."""

    kind = "parse"

    def __init__(self, message: str, raw_content: str = "") -> None:
        super().__init__(message)
        self.raw_content = raw_content[:200]


class StoreError(InboxSynopsisError):
    """The document store failed an existence check or a write."""

    kind = "store"


class EncryptionError(InboxSynopsisError):
    """Field encryption failed, almost always due to bad key material."""

    kind = "encryption"


class LLMServiceError(InboxSynopsisError):
    """Raw failure reported by an LLM backend, before classification."""

    kind = "llm_service"

    def __init__(self, message: str, status: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload
