"""Persistence Writer: encrypt a synopsis and store it with the owner counter."""

from __future__ import annotations

import json
from typing import Protocol

import structlog

from inbox_synopsis.models import NormalizedMessage, SynopsisRecord, SynopsisResult
from inbox_synopsis.security import FieldEncryptor
from inbox_synopsis.utils.clock import Clock, SystemClock

logger = structlog.get_logger()


class DocumentStore(Protocol):
    async def exists(self, message_id: str) -> bool: ...

    async def insert(self, record: SynopsisRecord) -> None: ...

    async def increment_counter(self, owner_id: str) -> None: ...


class PersistenceWriter:
    """Writes one encrypted record per processed message.

    Once ``persist`` returns, the message counts as processed and the
    deduplicator will filter it out.
    """

    def __init__(self, store: DocumentStore, encryptor: FieldEncryptor, clock: Clock | None = None) -> None:
        self._store = store
        self._encryptor = encryptor
        self._clock = clock or SystemClock()

    def build_record(self, message: NormalizedMessage, synopsis: SynopsisResult, owner_id: str) -> SynopsisRecord:
        """Encrypt every sensitive field of ``synopsis`` and ``message``.

        Raises:
            EncryptionError: A field could not be encrypted.
        """

        enc = self._encryptor
        now = self._clock.now()
        entities = synopsis.extracted_entities

        return SynopsisRecord(
            message_id=message.id,
            owner_id=owner_id,
            date_received=message.date_received,
            sender=enc.encrypt(message.sender),
            subject=enc.encrypt(message.subject),
            source_url=enc.encrypt(message.source_url),
            summary=enc.encrypt(synopsis.summary),
            urgency_score=enc.encrypt(str(synopsis.urgency_score)),
            action=enc.encrypt(synopsis.action),
            recipients=enc.encrypt(json.dumps(message.recipients)),
            unsubscribe_link=enc.encrypt_optional(message.unsubscribe_link),
            classification=enc.encrypt_optional(synopsis.classification or None),
            keywords=enc.encrypt_optional(json.dumps(synopsis.keywords) if synopsis.keywords else None),
            extracted_entities=enc.encrypt_optional(entities.model_dump_json() if entities else None),
            received_at=now,
            processed_at=now,
        )

    async def persist(self, message: NormalizedMessage, synopsis: SynopsisResult, owner_id: str) -> None:
        """Store the record, then bump the owner's analyzed counter.

        Raises:
            EncryptionError: A field could not be encrypted.
            StoreError: The record or the counter could not be written.
        """

        record = self.build_record(message, synopsis, owner_id)
        await self._store.insert(record)
        await self._store.increment_counter(owner_id)
        logger.debug("synopsis_persisted", message_id=message.id, owner_id=owner_id)
