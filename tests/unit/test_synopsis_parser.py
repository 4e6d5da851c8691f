"""Unit tests for LLM response parsing."""

from __future__ import annotations

from inbox_synopsis.synopsis.parser import (
    clean_json_fragment,
    parse_extracted_entities,
    parse_synopsis_response,
)
from tests.fakes import synopsis_text


def test_parses_well_formed_response() -> None:
    result = parse_synopsis_response(synopsis_text(), "m1")

    assert result is not None
    assert result.summary == "Quarterly report ready for review."
    assert result.urgency_score == 72
    assert result.action == "Review report"
    assert result.classification == "Work-Related"
    assert result.keywords == ["report", "quarterly", "review"]
    assert result.extracted_entities is not None
    assert result.extracted_entities.sender_name == "Alice Smith"
    assert result.extracted_entities.recipient_names == ["Bob"]
    assert result.extracted_entities.subject_terms == ["Quarterly", "Report"]
    assert result.extracted_entities.attachment_names == []


def test_multiline_summary_stops_at_next_label() -> None:
    content = "Summary: First line\ncontinues here\nUrgency Score: 10\nAction: Read later"

    result = parse_synopsis_response(content, "m1")

    assert result is not None
    assert result.summary == "First line\ncontinues here"
    assert result.classification == "Uncategorized"
    assert result.keywords == []
    assert result.extracted_entities is None


def test_urgency_is_clamped() -> None:
    result = parse_synopsis_response("Summary: x\nUrgency Score: 250\nAction: Act now", "m1")

    assert result is not None
    assert result.urgency_score == 100


def test_unrecognizable_response_is_skipped() -> None:
    assert parse_synopsis_response("I'm sorry, I cannot help with that.", "m1") is None
    assert parse_synopsis_response("", "m1") is None


def test_comma_separated_entity_strings_are_split() -> None:
    fragment = (
        '{"senderName": "Jane", "recipientNames": "Bob, Carol", "subjectTerms": "Invoice, May",'
        ' "date": "2025-05-30", "attachmentNames": "", "snippet": "Invoice attached"}'
    )

    entities = parse_extracted_entities(fragment, "m1")

    assert entities is not None
    assert entities.recipient_names == ["Bob", "Carol"]
    assert entities.subject_terms == ["Invoice", "May"]
    assert entities.attachment_names == []
    assert entities.date == "2025-05-30"


def test_single_quotes_and_trailing_commas_are_repaired() -> None:
    fragment = "{'senderName': 'Jane', 'recipientNames': ['Bob',], 'snippet': 'Hello there',}"

    entities = parse_extracted_entities(fragment, "m1")

    assert entities is not None
    assert entities.sender_name == "Jane"
    assert entities.recipient_names == ["Bob"]
    assert entities.snippet == "Hello there"


def test_clean_json_escapes_quotes_in_snippet() -> None:
    cleaned = clean_json_fragment('{"snippet": "He said "hi" to me", "date": "2025-01-01"}')

    assert '"He said \\"hi\\" to me"' in cleaned


def test_regex_fallback_for_broken_json() -> None:
    fragment = '{"senderName": "Jane" "date": "2025-02-03" "recipientNames": ["Bob", "Ann"] "snippet": "Notes"}'

    entities = parse_extracted_entities(fragment, "m1")

    assert entities is not None
    assert entities.sender_name == "Jane"
    assert entities.date == "2025-02-03"
    assert entities.recipient_names == ["Bob", "Ann"]
    assert entities.snippet == "Notes"


def test_missing_entities_fragment() -> None:
    assert parse_extracted_entities(None, "m1") is None


def test_empty_classification_line_falls_back() -> None:
    content = "Summary: x\nUrgency Score: 5\nAction: Read\nClassification:\nKeywords: alpha, beta"

    result = parse_synopsis_response(content, "m1")

    assert result is not None
    assert result.classification == "Uncategorized"
    assert result.keywords == ["alpha", "beta"]
