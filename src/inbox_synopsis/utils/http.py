"""Minimal JSON-over-HTTP helper for the Ollama backend."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any

from inbox_synopsis.exceptions import LLMServiceError


def post_json(url: str, payload: dict[str, Any], *, timeout: int, label: str) -> dict[str, Any]:
    """POST ``payload`` as JSON and decode the JSON response.

    Raises:
        LLMServiceError: With the HTTP status and raw error body on HTTP
            errors, or with no status when the service was unreachable or
            answered with something that is not a JSON object.
    """

    req = urllib.request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace") if exc.fp is not None else ""
        raise LLMServiceError(
            f"{label} request failed with status {exc.code}: {body[:500]}",
            status=exc.code,
            payload=body,
        ) from exc
    except (urllib.error.URLError, TimeoutError, ConnectionError) as exc:
        raise LLMServiceError(f"{label} unreachable: {exc}", payload=str(exc)) from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LLMServiceError(f"{label} returned invalid JSON", payload=raw[:500]) from exc
    if not isinstance(data, dict):
        raise LLMServiceError(f"{label} returned a non-object response", payload=raw[:500])
    return data
