"""Helpers for normalizing full Gmail messages into internal models."""

from __future__ import annotations

import base64
import re
from datetime import datetime, timezone
from email.utils import formataddr, getaddresses, parsedate_to_datetime
from typing import Any

from bs4 import BeautifulSoup

from inbox_synopsis.models import NormalizedMessage

_GMAIL_THREAD_URL = "https://mail.google.com/mail/u/0/#inbox/{thread_id}"

_HEADER_HTTP_RE = re.compile(r"<(https?://[^>]+)>")
_HEADER_MAILTO_RE = re.compile(r"<(mailto:[^>]+)>")
_UNSUBSCRIBE_HREF_RE = re.compile(r"^https?://\S*\b(?:unsubscribe|optout|remove)\b", re.I)
_UNSUBSCRIBE_TEXT_RE = re.compile(r"unsubscribe|opt ?out|remove me|manage preferences", re.I)


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        if not isinstance(h, dict):
            continue
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first.
            result.setdefault(name.lower(), value)
    return result


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    raw = base64.urlsafe_b64decode(padded.encode("utf-8"))
    return raw.decode("utf-8", errors="replace")


def _parse_recipients(hm: dict[str, str]) -> list[str]:
    values = [hm[name] for name in ("to", "cc", "bcc") if hm.get(name)]
    if not values:
        return []
    return [formataddr((name, addr)) if name else addr for name, addr in getaddresses(values) if addr]


def _parse_date(value: str | None, default: datetime) -> datetime:
    if not value:
        return default
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _PartWalk:
    """Collects body text and attachment names from a MIME part tree."""

    def __init__(self) -> None:
        self.plain = ""
        self.html = ""
        self.attachment_names: list[str] = []

    def visit(self, part: Any) -> None:
        if not isinstance(part, dict):
            return

        body = part.get("body") or {}
        if not isinstance(body, dict):
            body = {}

        filename = part.get("filename")
        if filename and body.get("attachmentId"):
            self.attachment_names.append(str(filename))

        mime = str(part.get("mimeType") or "").lower()
        data = body.get("data")
        if isinstance(data, str) and data and not filename:
            if mime == "text/plain" and not self.plain:
                self.plain = _decode_base64url(data)
            elif mime == "text/html" and not self.html:
                self.html = _decode_base64url(data)

        parts = part.get("parts")
        if isinstance(parts, list):
            for child in parts:
                self.visit(child)


def html_to_text(html: str) -> str:
    """Convert an HTML body to whitespace-collapsed plain text."""

    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def extract_unsubscribe_link(header_value: str | None, html: str | None) -> str | None:
    """Find an unsubscribe target, header first, then HTML anchors.

    Args:
        header_value: Raw ``List-Unsubscribe`` header, if present.
        html: Decoded HTML body, if present.

    Returns:
        An http(s) or mailto link, or None.
    """

    if header_value:
        match = _HEADER_HTTP_RE.search(header_value) or _HEADER_MAILTO_RE.search(header_value)
        return match.group(1) if match else header_value.strip() or None

    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if _UNSUBSCRIBE_HREF_RE.search(href) and _UNSUBSCRIBE_TEXT_RE.search(anchor.get_text(" ")):
            return href
    return None


def message_to_normalized(message: dict[str, Any], now: datetime | None = None) -> NormalizedMessage:
    """Convert a Gmail API message (format=full) to NormalizedMessage.

    The body prefers the text/plain part, then text derived from the HTML
    part, then the provider snippet.

    Args:
        message: Gmail API message dict.
        now: Fallback timestamp when the Date header is missing or invalid.

    Returns:
        NormalizedMessage: Parsed message.

    Raises:
        ValueError: If the message has no id.
    """

    message_id = str(message.get("id") or "")
    if not message_id:
        raise ValueError("Gmail message is missing an id")

    hm = _header_map(message)
    walk = _PartWalk()
    walk.visit(message.get("payload") or {})

    body = walk.plain
    if not body and walk.html:
        body = html_to_text(walk.html)
    if not body:
        body = str(message.get("snippet") or "")

    thread_id = str(message.get("threadId") or message_id)

    return NormalizedMessage(
        id=message_id,
        subject=hm.get("subject") or "No Subject",
        body=body,
        sender=hm.get("from") or "Unknown Sender",
        recipients=_parse_recipients(hm),
        date_received=_parse_date(hm.get("date"), now or datetime.now(timezone.utc)),
        unsubscribe_link=extract_unsubscribe_link(hm.get("list-unsubscribe"), walk.html),
        attachment_names=walk.attachment_names,
        source_url=_GMAIL_THREAD_URL.format(thread_id=thread_id),
    )
