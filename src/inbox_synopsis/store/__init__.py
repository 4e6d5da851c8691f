"""Local document store for processed-message synopses."""

from inbox_synopsis.store.repository import SynopsisRepository

__all__ = ["SynopsisRepository"]
