"""Normalized mailbox message model.

A message is produced once by the fetcher and never modified afterwards; the
rest of the pipeline only reads it.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class NormalizedMessage(BaseModel):
    """A provider message reduced to the fields the synopsis pipeline needs."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Provider-unique message ID")
    subject: str = Field(default="No Subject", description="Subject header")
    body: str = Field(default="", description="Plain-text body")
    sender: str = Field(default="Unknown Sender", description="Raw From header")
    recipients: list[str] = Field(default_factory=list, description="To, Cc and Bcc entries")
    date_received: datetime = Field(description="Parsed Date header")
    unsubscribe_link: str | None = Field(default=None, description="Unsubscribe URL or mailto")
    attachment_names: list[str] = Field(default_factory=list, description="Attachment filenames")
    source_url: str = Field(default="", description="Web URL of the message thread")
