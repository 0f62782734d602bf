"""Failure classification for retry and escalation decisions.

Failures reach the retry engine in many shapes: exceptions from httpx or
from our own fetch layer, HTTP responses, structured API payloads such as
``{"error": {"code": 429, "message": ..., "status": "RESOURCE_EXHAUSTED"}}``,
and plain strings that may embed such a payload. This module normalizes
them once into a :class:`FailureClassification`; downstream code branches
on its ``kind`` tag instead of probing fields.

Public helpers:
    - extract_status(failure) -> Optional[int]
    - extract_retry_after(failure) -> Optional[float]
    - is_quota_failure(failure, status=None) -> QuotaKind
    - format_message(failure, auth_type, user_tier, current_model, fallback_model) -> str
    - classify_failure(failure, ...) -> FailureClassification

None of them raise: unrecognized shapes degrade to a FATAL classification
with no status.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

from retryguard.core.errors.fetch import FetchError, FetchTimeoutError
from retryguard.core.errors.resilience import OperationCancelledError
from retryguard.core.observability.redaction import redact_secrets
from retryguard.core.resilience.messages import rate_limit_message
from retryguard.core.resilience.models import (
    AuthType,
    FailureClassification,
    FailureKind,
    QuotaKind,
    UserTier,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 1000
_UNKNOWN_ERROR_TEXT = "An unknown error occurred."
UNKNOWN_ERROR_MESSAGE = f"[API Error: {_UNKNOWN_ERROR_TEXT}]"

_QUOTA_METRIC_MARKER = "Quota exceeded for quota metric"
# Matches e.g. "Quota exceeded for quota metric 'Gemini 2.5 Pro Requests'".
# Plain substring checks, no regex, so hostile messages cannot cause ReDoS.
_PRO_QUOTA_PREFIX = "Quota exceeded for quota metric 'Gemini"
_PRO_QUOTA_SUFFIX = "Pro Requests'"
_RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"

_TRANSIENT_STATUSES = frozenset({408})
_NETWORK_MESSAGE_MARKERS = (
    "connection reset",
    "connection refused",
    "connection aborted",
    "econnreset",
    "econnrefused",
    "socket hang up",
    "network is unreachable",
)

# Status codes preceded by HTTP/status/error keywords, or a 4xx/5xx code at
# the start of the message. Anchored so "Found 200 results" and "123 items
# failed" yield nothing.
_STATUS_IN_TEXT = re.compile(
    r"(?:HTTP|status|error)\s*(?:code\s*)?:?\s*(\d{3})\b|^\[?([45]\d{2})\b",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Shape probing
# ---------------------------------------------------------------------------


def _get(obj: Any, name: str) -> Any:
    """Read *name* from a mapping key or attribute without raising."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    try:
        return getattr(obj, name, None)
    except Exception:
        return None


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        code = value
    elif isinstance(value, str) and value.strip().isdigit():
        code = int(value.strip())
    else:
        return None
    return code if 100 <= code <= 599 else None


def _parse_json_object(text: str) -> Optional[dict]:
    """Parse a JSON object embedded in *text* (from its first ``{``)."""
    start = text.find("{")
    if start == -1:
        return None
    try:
        parsed = json.loads(text[start:])
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _error_payload(data: Any) -> Optional[dict]:
    """Return the inner ``error`` dict of a structured API payload."""
    if isinstance(data, list) and data:
        # Streaming endpoints wrap the payload in a one-element array
        data = data[0]
    if isinstance(data, str):
        data = _parse_json_object(data)
    if isinstance(data, dict):
        inner = data.get("error")
        if isinstance(inner, dict):
            return inner
    return None


def _response_of(failure: Any) -> Any:
    response = _get(failure, "response")
    if response is None and _get(failure, "headers") is not None and _get(failure, "status_code") is not None:
        # The failure is itself a response object
        return failure
    return response


def _response_payload(response: Any) -> Optional[dict]:
    if response is None:
        return None
    data = _get(response, "data")
    payload = _error_payload(data)
    if payload is not None:
        return payload
    json_method = _get(response, "json")
    if callable(json_method):
        try:
            payload = _error_payload(json_method())
        except Exception:
            payload = None
        if payload is not None:
            return payload
    text = _get(response, "text")
    if isinstance(text, str):
        return _error_payload(text)
    return None


def _raw_message(failure: Any) -> Optional[str]:
    """Best-effort underlying message text, before any formatting."""
    if failure is None:
        return None
    if isinstance(failure, str):
        return failure
    if isinstance(failure, BaseException):
        try:
            text = str(failure)
        except Exception:
            text = ""
        return text or type(failure).__name__
    message = _get(failure, "message")
    if isinstance(message, str):
        return message
    payload = _error_payload(failure)
    if payload is not None and isinstance(payload.get("message"), str):
        return payload["message"]
    # A bare HTTP response: describe it by its status line
    status = _as_status(_get(failure, "status_code"))
    if status is not None:
        reason = _get(failure, "reason_phrase")
        return f"{status} {reason}" if isinstance(reason, str) and reason else str(status)
    return None


def _structured_payload(failure: Any) -> Optional[dict]:
    """Find a structured ``{"error": {...}}`` payload wherever it lives."""
    payload = _error_payload(failure)
    if payload is not None:
        return payload
    if isinstance(failure, BaseException):
        for arg in failure.args:
            payload = _error_payload(arg)
            if payload is not None:
                return payload
    payload = _response_payload(_response_of(failure))
    if payload is not None:
        return payload
    message = _raw_message(failure)
    if message:
        return _error_payload(message)
    return None


def _message_texts(failure: Any) -> list[str]:
    texts: list[str] = []
    raw = _raw_message(failure)
    if raw:
        texts.append(raw)
    payload = _structured_payload(failure)
    if payload is not None and isinstance(payload.get("message"), str):
        texts.append(payload["message"])
    response = _response_of(failure)
    data = _get(response, "data")
    if isinstance(data, str):
        texts.append(data)
    return texts


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def extract_status(failure: Any) -> Optional[int]:
    """Extract an HTTP-like status code from a failure of unknown shape.

    Checks, in order: ``status``, ``status_code``, ``code``, the attached
    response's ``status`` / ``status_code``, a structured payload's
    ``error.code``, and finally a status code in the message text.

    Args:
        failure: Any failure value (exception, response, dict, string, None).

    Returns:
        Status code in 100-599, or ``None`` if no signal was found.
    """
    try:
        for name in ("status", "status_code", "code"):
            code = _as_status(_get(failure, name))
            if code is not None:
                return code

        response = _response_of(failure)
        if response is not None and response is not failure:
            for name in ("status", "status_code"):
                code = _as_status(_get(response, name))
                if code is not None:
                    return code

        payload = _structured_payload(failure)
        if payload is not None:
            code = _as_status(payload.get("code"))
            if code is not None:
                return code

        message = _raw_message(failure)
        if message:
            match = _STATUS_IN_TEXT.search(message)
            if match:
                return _as_status(match.group(1) or match.group(2))
    except Exception:
        logger.debug("Status extraction failed for %s", type(failure).__name__, exc_info=True)
    return None


def _parse_retry_after_value(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    # RFC 7231 HTTP-date
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def extract_retry_after(failure: Any) -> Optional[float]:
    """Extract a server-provided retry-after duration in seconds.

    Looks at a ``retry_after`` attribute/key first, then the ``Retry-After``
    header of the attached response (numeric seconds or an HTTP-date).

    Returns:
        Non-negative seconds, or ``None`` if the server gave no hint.
    """
    try:
        explicit = _parse_retry_after_value(_get(failure, "retry_after"))
        if explicit is not None:
            return explicit

        headers = _get(_response_of(failure), "headers")
        if headers is None:
            return None
        getter = _get(headers, "get")
        if not callable(getter):
            return None
        value = getter("retry-after")
        if value is None:
            value = getter("Retry-After")
        return _parse_retry_after_value(value)
    except Exception:
        logger.debug("Retry-After extraction failed for %s", type(failure).__name__, exc_info=True)
        return None


def is_quota_failure(failure: Any, status: Optional[int] = None) -> QuotaKind:
    """Detect whether a failure reports an exhausted quota.

    Args:
        failure: Any failure value.
        status: Precomputed status code; extracted from *failure* if omitted.

    Returns:
        PRO_QUOTA when the paid-tier ("Pro") quota metric is named,
        GENERIC_QUOTA for any other quota message, a RESOURCE_EXHAUSTED
        payload, or a 429 status; NONE otherwise.
    """
    try:
        texts = _message_texts(failure)
        if any(_PRO_QUOTA_PREFIX in text and _PRO_QUOTA_SUFFIX in text for text in texts):
            return QuotaKind.PRO_QUOTA
        if any(_QUOTA_METRIC_MARKER in text for text in texts):
            return QuotaKind.GENERIC_QUOTA

        payload = _structured_payload(failure)
        if payload is not None and payload.get("status") == _RESOURCE_EXHAUSTED:
            return QuotaKind.GENERIC_QUOTA

        if status is None:
            status = extract_status(failure)
        if status == 429:
            return QuotaKind.GENERIC_QUOTA
    except Exception:
        logger.debug("Quota detection failed for %s", type(failure).__name__, exc_info=True)
    return QuotaKind.NONE


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."


def _unwrap_nested_message(message: str) -> str:
    """Some APIs put a JSON-encoded error inside ``error.message``."""
    nested = _error_payload(message)
    if nested is not None and isinstance(nested.get("message"), str):
        return nested["message"]
    return message


def format_message(
    failure: Any,
    auth_type: Optional[AuthType] = None,
    user_tier: Optional[UserTier] = None,
    current_model: Optional[str] = None,
    fallback_model: Optional[str] = None,
    *,
    max_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
) -> str:
    """Produce the user-facing text for a failure.

    The underlying message is redacted and truncated to *max_length*. For
    rate-limited failures a policy sentence is appended: a downgrade notice
    for an exhausted Pro quota when *fallback_model* is given, otherwise a
    generic "rate limited, retrying" notice.

    Returns:
        ``"[API Error: ...]"`` text; never raises.
    """
    try:
        payload = _structured_payload(failure)
        raw = _raw_message(failure)
        quota_kind = is_quota_failure(failure)

        payload_status = payload.get("status") if payload is not None else None
        status_suffix = f" (Status: {payload_status})" if isinstance(payload_status, str) else ""
        if payload is not None and isinstance(payload.get("message"), str):
            message = _unwrap_nested_message(payload["message"])
        elif raw:
            message = raw
            status_suffix = ""
        elif quota_kind != QuotaKind.NONE:
            # Message-less quota payloads still get the rate-limit notice
            message = _UNKNOWN_ERROR_TEXT
        else:
            return UNKNOWN_ERROR_MESSAGE

        text = f"[API Error: {_truncate(redact_secrets(message), max_length)}{status_suffix}]"

        if quota_kind != QuotaKind.NONE:
            text += rate_limit_message(
                quota_kind,
                auth_type=auth_type,
                user_tier=user_tier,
                current_model=current_model,
                fallback_model=fallback_model,
            )
        return text
    except Exception:
        logger.debug("Message formatting failed for %s", type(failure).__name__, exc_info=True)
        return UNKNOWN_ERROR_MESSAGE


def _is_cancellation(failure: Any) -> bool:
    return isinstance(failure, (OperationCancelledError, asyncio.CancelledError))


def _is_timeout(failure: Any) -> bool:
    if isinstance(failure, (FetchTimeoutError, TimeoutError, asyncio.TimeoutError)):
        return True
    # httpx.TimeoutException and friends, matched by name so callers using
    # another transport get the same treatment
    return "timeout" in type(failure).__name__.lower()


def _is_network_failure(failure: Any) -> bool:
    if isinstance(failure, (FetchError, ConnectionError)):
        return True
    type_name = type(failure).__name__.lower()
    if any(
        term in type_name
        for term in ("connect", "network", "transport", "protocol", "readerror", "writeerror")
    ):
        return True
    message = (_raw_message(failure) or "").lower()
    return any(marker in message for marker in _NETWORK_MESSAGE_MARKERS)


def classify_failure(
    failure: Any,
    auth_type: Optional[AuthType] = None,
    user_tier: Optional[UserTier] = None,
    current_model: Optional[str] = None,
    fallback_model: Optional[str] = None,
    *,
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
) -> FailureClassification:
    """Classify a failure for retry, escalation and display.

    Classification rules (applied in order):
        1. Cancellation errors → CANCELLED
        2. Any quota failure, including a bare 429 → RATE_LIMITED
        3. Timeouts → TRANSIENT
        4. 5xx and 408 → TRANSIENT; any other status → FATAL
        5. Connection/network failures → TRANSIENT
        6. Default → FATAL

    Args:
        failure: Any failure value.
        auth_type: Message-formatting input.
        user_tier: Message-formatting input.
        current_model: Model the request targeted.
        fallback_model: Model the caller may be downgraded to.
        max_message_length: Truncation bound for the underlying message.

    Returns:
        A FailureClassification; never raises.
    """
    status = extract_status(failure)
    quota_kind = is_quota_failure(failure, status)
    message = format_message(
        failure,
        auth_type,
        user_tier,
        current_model,
        fallback_model,
        max_length=max_message_length,
    )

    if _is_cancellation(failure):
        kind = FailureKind.CANCELLED
    elif quota_kind != QuotaKind.NONE:
        kind = FailureKind.RATE_LIMITED
    elif _is_timeout(failure):
        kind = FailureKind.TRANSIENT
    elif status is not None:
        if status >= 500 or status in _TRANSIENT_STATUSES:
            kind = FailureKind.TRANSIENT
        else:
            kind = FailureKind.FATAL
    elif _is_network_failure(failure):
        kind = FailureKind.TRANSIENT
    else:
        kind = FailureKind.FATAL

    return FailureClassification(
        kind=kind,
        status=status,
        quota_kind=quota_kind,
        message=message,
        retry_after=extract_retry_after(failure),
    )
