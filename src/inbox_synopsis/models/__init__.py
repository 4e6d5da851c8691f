"""Data models for Inbox Synopsis.

This module contains Pydantic models for data validation and serialization,
plus the plain dataclasses the scheduler and queue pass around internally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from inbox_synopsis.models.message import NormalizedMessage


class Priority(str, Enum):
    """Queue priority, assigned once from message recency."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def score(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class RunState(str, Enum):
    """Lifecycle of one scheduler run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED_ON_QUOTA = "halted_on_quota"
    HALTED_ON_AUTH = "halted_on_auth"


class ExtractedEntities(BaseModel):
    """Entities the model pulled out of a message."""

    sender_name: str = Field(default="", description="Sender display name")
    date: str = Field(default="", description="Message date as YYYY-MM-DD")
    snippet: str = Field(default="", description="Short preview of the body")
    recipient_names: list[str] = Field(default_factory=list)
    subject_terms: list[str] = Field(default_factory=list)
    attachment_names: list[str] = Field(default_factory=list)


class SynopsisResult(BaseModel):
    """AI-generated synopsis for one message."""

    summary: str = Field(description="One sentence summary")
    urgency_score: int = Field(ge=0, le=100, description="Urgency from 0 to 100")
    action: str = Field(default="", description="Short imperative action")
    classification: str = Field(default="Uncategorized", description="Single-word class")
    keywords: list[str] = Field(default_factory=list)
    extracted_entities: Optional[ExtractedEntities] = Field(default=None)


class QuotaInfo(BaseModel):
    """Quota details reported with a rate-limit failure."""

    quota_exceeded: bool = Field(default=True)
    retry_after_ms: Optional[float] = Field(default=None, description="Suggested wait in ms")
    quota_metric: Optional[str] = Field(default=None)
    quota_limit: Optional[str] = Field(default=None)


class CallerIdentity(BaseModel):
    """The authenticated caller and their mailbox access token."""

    id: str
    mailbox_token: str


class EncryptedField(BaseModel):
    """Ciphertext and authentication tag, both hex encoded."""

    ciphertext: str
    auth_tag: str


class SynopsisRecord(BaseModel):
    """Stored form of a processed message.

    Every encrypted field is present; absent values are stored as an explicit
    ``None`` so readers always see the same schema.
    """

    message_id: str
    owner_id: str
    provider: str = "gmail"
    date_received: datetime
    sender: EncryptedField
    subject: EncryptedField
    source_url: EncryptedField
    summary: EncryptedField
    urgency_score: EncryptedField
    action: EncryptedField
    recipients: EncryptedField
    unsubscribe_link: Optional[EncryptedField] = None
    classification: Optional[EncryptedField] = None
    keywords: Optional[EncryptedField] = None
    extracted_entities: Optional[EncryptedField] = None
    read: bool = False
    received_at: datetime
    processed_at: datetime


@dataclass(frozen=True)
class ProcessedMessage:
    """A message together with the synopsis that was persisted for it."""

    message: NormalizedMessage
    synopsis: SynopsisResult


@dataclass(frozen=True)
class FailedMessage:
    """A message whose synopsis attempt raised."""

    message: NormalizedMessage
    error: Exception
    is_rate_limit: bool = False


@dataclass(frozen=True)
class DelayState:
    """Current adaptive delays in seconds."""

    group_delay: float
    item_delay: float


@dataclass
class BatchOutcome:
    """Aggregated result of one scheduler run."""

    successful: list[ProcessedMessage] = field(default_factory=list)
    failed: list[FailedMessage] = field(default_factory=list)
    skipped: list[NormalizedMessage] = field(default_factory=list)
    pending: list[NormalizedMessage] = field(default_factory=list)
    quota_info: QuotaInfo | None = None
    current_delays: DelayState | None = None
    state: RunState = RunState.IDLE


@dataclass
class QueuedItem:
    """A message waiting in the background queue.

    Only the queue mutates these fields.
    """

    message: NormalizedMessage
    owner_id: str
    added_at: datetime
    priority: Priority
    retry_count: int = 0
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None


@dataclass(frozen=True)
class QueueStats:
    """Snapshot of queue contents, computed on demand."""

    total: int
    pending: int
    processing: int
    retrying: int
    average_wait_seconds: float

    @property
    def is_active(self) -> bool:
        return self.total > 0


@dataclass(frozen=True)
class EnqueueResult:
    """How many messages the queue took and how many it turned away."""

    accepted: int
    rejected: int
    rejected_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessingError:
    """Per-message error reported back to the caller."""

    message_id: str
    kind: str
    detail: str


@dataclass
class IngestResult:
    """Everything a caller learns from one ingest call."""

    messages: list[ProcessedMessage] = field(default_factory=list)
    next_page_token: str | None = None
    processing_errors: list[ProcessingError] | None = None
    rate_limit_info: QuotaInfo | None = None
    queue_stats: QueueStats | None = None
    enqueued: EnqueueResult | None = None


__all__ = [
    "BatchOutcome",
    "CallerIdentity",
    "DelayState",
    "EncryptedField",
    "EnqueueResult",
    "ExtractedEntities",
    "FailedMessage",
    "IngestResult",
    "NormalizedMessage",
    "Priority",
    "ProcessedMessage",
    "ProcessingError",
    "QueueStats",
    "QueuedItem",
    "QuotaInfo",
    "RunState",
    "SynopsisRecord",
    "SynopsisResult",
]
