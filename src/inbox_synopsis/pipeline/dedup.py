"""Deduplicator: drop messages that already have a stored synopsis."""

from __future__ import annotations

import asyncio

import structlog

from inbox_synopsis.exceptions import StoreError
from inbox_synopsis.models import NormalizedMessage
from inbox_synopsis.pipeline.persistence import DocumentStore

logger = structlog.get_logger()


class Deduplicator:
    """Filters a batch down to messages the store has not seen.

    A failed existence check is logged and the message is kept as new. The
    store rejects a second insert for the same id, so the worst case is one
    wasted LLM call reported as a per-message ``StoreError``.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def _is_new(self, message: NormalizedMessage) -> bool:
        try:
            return not await self._store.exists(message.id)
        except StoreError as exc:
            logger.warning("dedup_check_failed", message_id=message.id, error=str(exc))
            return True

    async def filter_new(self, messages: list[NormalizedMessage]) -> list[NormalizedMessage]:
        """Return the messages without a stored record, in input order."""

        if not messages:
            return []
        verdicts = await asyncio.gather(*(self._is_new(m) for m in messages))
        fresh = [m for m, is_new in zip(messages, verdicts) if is_new]
        logger.info("dedup_filtered", total=len(messages), new=len(fresh), duplicates=len(messages) - len(fresh))
        return fresh
