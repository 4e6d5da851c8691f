"""Classification of LLM backend failures.

Status and body come from a ``google.genai`` ``APIError`` (``code`` and
``details``) or from an ``LLMServiceError`` (``status`` and ``payload``).
Quota details are read from the structured body first (``error.details``
entries of type ``RetryInfo`` and ``QuotaFailure``) and from free text second.
"""

from __future__ import annotations

import json
import re
from typing import Any

from google.genai import errors as genai_errors

from inbox_synopsis.exceptions import (
    AuthError,
    ConfigurationError,
    LLMServiceError,
    RateLimitedError,
    TransientError,
)
from inbox_synopsis.models import QuotaInfo

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_QUOTA_FAILURE_TYPE = "type.googleapis.com/google.rpc.QuotaFailure"

_RETRY_DELAY_RE = re.compile(r"(\d+(?:\.\d+)?)s")
_FREE_TEXT_DELAY_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:seconds?|s)\b", re.I)
_RATE_LIMIT_TEXT_RE = re.compile(r"\b429\b|quota|rate.?limit|resource.?exhausted", re.I)

RATE_LIMIT_STATUSES = frozenset({429, 503})
AUTH_STATUSES = frozenset({401, 403})


def _payload_dict(payload: Any) -> dict[str, Any] | None:
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) else None
    return None


def _structured_quota(data: dict[str, Any]) -> tuple[int | None, QuotaInfo | None]:
    # SDK errors may carry the inner error object without the envelope
    error = data.get("error", data)
    if not isinstance(error, dict):
        return None, None

    code = error.get("code") if isinstance(error.get("code"), int) else None
    retry_after_ms: float | None = None
    metric: str | None = None
    limit: str | None = None

    for detail in error.get("details") or []:
        if not isinstance(detail, dict):
            continue
        kind = detail.get("@type")
        if kind == _RETRY_INFO_TYPE and isinstance(detail.get("retryDelay"), str):
            match = _RETRY_DELAY_RE.search(detail["retryDelay"])
            if match:
                retry_after_ms = float(match.group(1)) * 1000
        elif kind == _QUOTA_FAILURE_TYPE:
            violations = detail.get("violations") or []
            if violations and isinstance(violations[0], dict):
                metric = violations[0].get("quotaMetric")
                limit = violations[0].get("quotaValue")

    if retry_after_ms is None and metric is None and limit is None:
        return code, None
    return code, QuotaInfo(retry_after_ms=retry_after_ms, quota_metric=metric, quota_limit=limit)


def _free_text_quota(text: str) -> QuotaInfo | None:
    match = _FREE_TEXT_DELAY_RE.search(text)
    if not match:
        return None
    return QuotaInfo(retry_after_ms=float(match.group(1)) * 1000)


def extract_quota_info(payload: Any) -> tuple[int | None, QuotaInfo | None]:
    """Return the status code and quota details carried by an error payload."""

    data = _payload_dict(payload)
    if data is not None:
        code, quota = _structured_quota(data)
        if quota is not None:
            return code, quota
        text = json.dumps(data)
    else:
        code, text = None, "" if payload is None else str(payload)
    return code, _free_text_quota(text)


def classify_llm_error(exc: Exception) -> AuthError | RateLimitedError | TransientError:
    """Map a raw LLM failure onto the typed error taxonomy.

    429 and 503 become :class:`RateLimitedError`, 401 and 403 become
    :class:`AuthError`, anything else :class:`TransientError`. When the
    transport reported no status, rate limiting is inferred from the message
    text. A missing API key counts as an auth failure.
    """

    if isinstance(exc, (AuthError, RateLimitedError, TransientError)):
        return exc
    if isinstance(exc, ConfigurationError):
        return AuthError(str(exc), status=None)

    if isinstance(exc, genai_errors.APIError):
        status, payload = exc.code, exc.details
    elif isinstance(exc, LLMServiceError):
        status, payload = exc.status, exc.payload
    else:
        status, payload = None, None
    payload_code, quota = extract_quota_info(payload if payload is not None else str(exc))
    status = status or payload_code
    if status is None and _RATE_LIMIT_TEXT_RE.search(f"{exc} {payload or ''}"):
        status = 429

    if status in RATE_LIMIT_STATUSES:
        if quota is None:
            quota = QuotaInfo()
        return RateLimitedError(
            str(exc) or "LLM rate limit exceeded",
            status=status,
            retry_after_ms=quota.retry_after_ms,
            quota=quota,
        )
    if status in AUTH_STATUSES:
        return AuthError(str(exc), status=status)
    return TransientError(str(exc), status=status)
