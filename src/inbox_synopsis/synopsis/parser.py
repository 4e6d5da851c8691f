"""Parsing of labeled-section LLM responses into :class:`SynopsisResult`.

The model is asked for six labeled lines. Each label is located on its own,
so a missing or reordered section degrades that field only. The
``ExtractedEntities`` fragment is decoded in three steps: strict JSON, JSON
after a cleanup pass, then field-by-field regex extraction.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from inbox_synopsis.exceptions import ParseError
from inbox_synopsis.models import ExtractedEntities, SynopsisResult

logger = structlog.get_logger()

_SUMMARY_RE = re.compile(r"Summary:\s*([\s\S]*?)(?=\n\s*Urgency Score:|$)")
_URGENCY_RE = re.compile(r"Urgency Score:\s*(\d+)")
_ACTION_RE = re.compile(r"Action:\s*([\s\S]*?)(?=\n\s*Classification:|$)")
_CLASSIFICATION_RE = re.compile(r"Classification:[ \t]*([\w-]+)")
_KEYWORDS_RE = re.compile(r"Keywords:\s*([\s\S]*?)(?=\n\s*ExtractedEntities:|$)")
_ENTITIES_RE = re.compile(r"ExtractedEntities:\s*(\{[\s\S]*?\})")

_SINGLE_QUOTE_RE = re.compile(r"(?<!\\)'")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_ADJACENT_ARRAYS_RE = re.compile(r"\]\s*\[")
_SNIPPET_VALUE_RE = re.compile(r'("snippet":\s*)"(.*?)"(\s*[,}])')
_UNESCAPED_QUOTE_RE = re.compile(r'(?<!\\)"')

_LIST_FIELDS = {
    "recipientNames": "recipient_names",
    "subjectTerms": "subject_terms",
    "attachmentNames": "attachment_names",
}
_TEXT_FIELDS = {"senderName": "sender_name", "date": "date", "snippet": "snippet"}


def _split_list(value: Any) -> list[str]:
    if isinstance(value, list):
        items = [str(v) for v in value if v is not None]
    elif isinstance(value, str):
        items = value.split(",")
    else:
        return []
    return [item.strip().strip('"').strip() for item in items if item.strip().strip('"').strip()]


def _entities_from_mapping(data: dict[str, Any]) -> ExtractedEntities:
    kwargs: dict[str, Any] = {}
    for source, target in _TEXT_FIELDS.items():
        value = data.get(source)
        kwargs[target] = "" if value is None else str(value).strip()
    for source, target in _LIST_FIELDS.items():
        kwargs[target] = _split_list(data.get(source))
    return ExtractedEntities(**kwargs)


def clean_json_fragment(fragment: str) -> str:
    """Repair the usual LLM JSON mistakes.

    Unescaped single quotes become double quotes, control whitespace is
    flattened, trailing commas are dropped, adjacent arrays get a separating
    comma and stray quotes inside the snippet value are escaped.
    """

    cleaned = _SINGLE_QUOTE_RE.sub('"', fragment)
    cleaned = re.sub(r"[\r\n\t]", " ", cleaned)
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)
    cleaned = _ADJACENT_ARRAYS_RE.sub("],[", cleaned)

    def _escape_snippet(match: re.Match[str]) -> str:
        value = _UNESCAPED_QUOTE_RE.sub(r'\\"', match.group(2))
        return f'{match.group(1)}"{value}"{match.group(3)}'

    cleaned = _SNIPPET_VALUE_RE.sub(_escape_snippet, cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _entities_by_regex(fragment: str) -> ExtractedEntities:
    data: dict[str, Any] = {}
    for field in ("senderName", "date"):
        match = re.search(rf'"{field}":\s*"([^"]+)"', fragment)
        if match:
            data[field] = match.group(1)

    snippet = re.search(r'"snippet":\s*"(.+?)"\s*(?:,\s*"|\}|$)', fragment, re.S)
    if snippet:
        data["snippet"] = snippet.group(1).replace('\\"', '"')

    for field in _LIST_FIELDS:
        array = re.search(rf'"{field}":\s*\[(.*?)\]', fragment, re.S)
        if array:
            data[field] = array.group(1)
            continue
        text = re.search(rf'"{field}":\s*"([^"]*)"', fragment)
        if text:
            data[field] = text.group(1)

    return _entities_from_mapping(data)


def parse_extracted_entities(fragment: str | None, message_id: str) -> ExtractedEntities | None:
    """Decode an ``ExtractedEntities`` fragment, falling back step by step."""

    if not fragment:
        return None

    for stage, candidate in (("strict", fragment), ("cleaned", clean_json_fragment(fragment))):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            logger.debug("entities_json_decode_failed", message_id=message_id, stage=stage)
            continue
        if isinstance(data, dict):
            return _entities_from_mapping(data)

    logger.warning("entities_regex_fallback", message_id=message_id, fragment=fragment[:200])
    return _entities_by_regex(fragment)


def _parse(content: str, message_id: str) -> SynopsisResult:
    summary_match = _SUMMARY_RE.search(content)
    urgency_match = _URGENCY_RE.search(content)
    action_match = _ACTION_RE.search(content)

    summary = summary_match.group(1).strip() if summary_match else ""
    action = action_match.group(1).strip() if action_match else ""
    if not summary and not action and urgency_match is None:
        raise ParseError(f"No synopsis sections found for message {message_id}", raw_content=content)

    urgency = min(100, max(0, int(urgency_match.group(1)))) if urgency_match else 0

    classification_match = _CLASSIFICATION_RE.search(content)
    keywords_match = _KEYWORDS_RE.search(content)
    entities_match = _ENTITIES_RE.search(content)

    return SynopsisResult(
        summary=summary,
        urgency_score=urgency,
        action=action,
        classification=classification_match.group(1) if classification_match else "Uncategorized",
        keywords=_split_list(keywords_match.group(1).strip()) if keywords_match else [],
        extracted_entities=parse_extracted_entities(
            entities_match.group(1) if entities_match else None, message_id
        ),
    )


def parse_synopsis_response(content: str, message_id: str) -> SynopsisResult | None:
    """Parse an LLM response.

    Args:
        content: Raw model output.
        message_id: Message the response belongs to, for logging.

    Returns:
        The parsed synopsis, or None when no section could be recovered.
        An unparseable response is a skip, not a failure.
    """

    try:
        return _parse(content, message_id)
    except ParseError as exc:
        logger.warning("synopsis_parse_failed", message_id=message_id, raw_content=exc.raw_content)
        return None
