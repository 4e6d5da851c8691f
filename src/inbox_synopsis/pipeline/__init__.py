"""Ingestion pipeline: dedup, scheduling, background queue, persistence."""

from inbox_synopsis.pipeline.dedup import Deduplicator
from inbox_synopsis.pipeline.persistence import DocumentStore, PersistenceWriter
from inbox_synopsis.pipeline.queue import BackgroundQueue
from inbox_synopsis.pipeline.scheduler import AdaptiveBatchScheduler

__all__ = [
    "AdaptiveBatchScheduler",
    "BackgroundQueue",
    "Deduplicator",
    "DocumentStore",
    "PersistenceWriter",
]
