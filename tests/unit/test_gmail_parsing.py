"""Unit tests for Gmail message normalization."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from inbox_synopsis.gmail.parsing import (
    extract_unsubscribe_link,
    html_to_text,
    message_to_normalized,
)
from tests.fakes import b64


def _message(payload: dict, **extra) -> dict:
    return {"id": "m1", "threadId": "t1", "snippet": "snippet text", "payload": payload, **extra}


def test_message_to_normalized_prefers_plain_text(sample_email_data) -> None:
    message = message_to_normalized(sample_email_data)

    assert message.id == "msg123456"
    assert message.subject == "Weekly Newsletter - Python Tips"
    assert message.sender == "Python Weekly <newsletter@python.org>"
    assert message.recipients == ["user@example.com"]
    assert message.body == "Welcome to this week's Python tips!"
    assert message.date_received == datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
    assert message.source_url == "https://mail.google.com/mail/u/0/#inbox/thread-msg123456"


def test_html_body_is_converted_to_text() -> None:
    html = "<html><head><style>p{}</style></head><body><p>Hello</p>\n<p>world</p></body></html>"
    message = message_to_normalized(_message({"mimeType": "text/html", "body": {"data": b64(html)}}))

    assert message.body == "Hello world"


def test_snippet_used_when_no_body() -> None:
    message = message_to_normalized(_message({"mimeType": "multipart/mixed", "parts": []}))

    assert message.body == "snippet text"
    assert message.subject == "No Subject"
    assert message.sender == "Unknown Sender"


def test_attachments_and_recipients_collected() -> None:
    payload = {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "To", "value": "Bob <bob@example.com>, carol@example.com"},
            {"name": "Cc", "value": "dave@example.com"},
        ],
        "parts": [
            {"mimeType": "text/plain", "body": {"data": b64("see attached")}},
            {
                "mimeType": "application/pdf",
                "filename": "report.pdf",
                "body": {"attachmentId": "att-1", "size": 1200},
            },
            {"mimeType": "multipart/related", "parts": [
                {"mimeType": "image/png", "filename": "chart.png", "body": {"attachmentId": "att-2"}},
            ]},
        ],
    }
    message = message_to_normalized(_message(payload))

    assert message.attachment_names == ["report.pdf", "chart.png"]
    assert message.recipients == ["Bob <bob@example.com>", "carol@example.com", "dave@example.com"]


def test_invalid_date_falls_back_to_now() -> None:
    now = datetime(2025, 1, 2, tzinfo=timezone.utc)
    payload = {"headers": [{"name": "Date", "value": "not a date"}]}

    assert message_to_normalized(_message(payload), now=now).date_received == now


def test_missing_id_raises() -> None:
    with pytest.raises(ValueError):
        message_to_normalized({"payload": {}})


class TestUnsubscribeLink:
    def test_header_prefers_http_url(self) -> None:
        header = "<mailto:unsub@example.com>, <https://example.com/unsubscribe?u=1>"

        assert extract_unsubscribe_link(header, None) == "https://example.com/unsubscribe?u=1"

    def test_header_mailto_fallback(self) -> None:
        assert extract_unsubscribe_link("<mailto:unsub@example.com>", None) == "mailto:unsub@example.com"

    def test_html_anchor_fallback(self) -> None:
        html = (
            '<p><a href="https://example.com/news">Read more</a></p>'
            '<p><a href="https://example.com/unsubscribe?id=9">Unsubscribe</a></p>'
        )

        assert extract_unsubscribe_link(None, html) == "https://example.com/unsubscribe?id=9"

    def test_no_link(self) -> None:
        assert extract_unsubscribe_link(None, "<p>Hi</p>") is None
        assert extract_unsubscribe_link(None, None) is None


def test_html_to_text_drops_scripts() -> None:
    assert html_to_text("<script>alert(1)</script><b>Bold</b>  text") == "Bold text"
