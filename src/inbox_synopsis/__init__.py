"""Inbox Synopsis - AI-generated synopses for new mailbox messages.

This package fetches recent Gmail messages, skips the ones already analyzed,
summarizes the rest with an LLM under adaptive rate limiting, and stores the
results encrypted.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from inbox_synopsis.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
