"""Sensitive data redaction utilities.

Provides pattern-based redaction for API keys, bearer tokens and similar
secrets. Applied to every failure message before it is logged, audited, or
formatted for an end user.
"""

import re
from typing import Any, Final, List, Tuple

SENSITIVE_PATTERNS: Final[List[Tuple[str, str]]] = [
    (r"(?i)(api[_-]?key|apikey)\s*[:=]\s*['\"]?([a-zA-Z0-9_\-]{20,})['\"]?", "API_KEY"),
    (
        r"(?i)(access[_-]?token|accesstoken)\s*[:=]\s*['\"]?([a-zA-Z0-9_\-\.]{20,})['\"]?",
        "ACCESS_TOKEN",
    ),
    (r"(?i)bearer\s+([a-zA-Z0-9_\-\.]{8,})", "BEARER_TOKEN"),
    # Google API keys, also when embedded in a URL query string
    (r"AIza[0-9A-Za-z_\-]{35}", "GOOGLE_API_KEY"),
    (r"(?i)([?&]key=)([a-zA-Z0-9_\-]{20,})", "URL_KEY"),
    (r"ya29\.[0-9A-Za-z_\-\.]+", "OAUTH_TOKEN"),
]
"""Patterns for secrets that must never reach logs or user-facing text.

Each tuple contains:
- regex pattern: The pattern to match sensitive data
- label: A human-readable label for the type of sensitive data
"""

_COMPILED_PATTERNS = [(re.compile(pattern), label) for pattern, label in SENSITIVE_PATTERNS]

_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "access_token",
        "refresh_token",
        "authorization",
        "proxy_authorization",
        "x_goog_api_key",
        "x_api_key",
        "cookie",
        "set_cookie",
    }
)


def redact_secrets(text: str, redaction_format: str = "[REDACTED:{label}]") -> str:
    """Remove API keys and tokens from a text string.

    Args:
        text: Input text that may contain secrets.
        redaction_format: Replacement format string (uses ``{label}``).

    Returns:
        Text with secrets replaced by redaction markers.
    """
    if not text:
        return text
    result = text
    for pattern, label in _COMPILED_PATTERNS:
        result = pattern.sub(redaction_format.format(label=label), result)
    return result


def redact_sensitive_data(data: Any, *, max_depth: int = 10) -> Any:
    """Recursively redact secrets from strings, dicts, and lists.

    Values under well-known secret key names (``api_key``, ``authorization``
    and similar) are replaced wholesale; strings are pattern-scanned.

    Args:
        data: The data to redact (string, dict, list, or nested structure).
        max_depth: Maximum recursion depth to prevent stack overflow.

    Returns:
        A copy of the data with sensitive values redacted.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, str):
        return redact_secrets(data)

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if key_lower in _SENSITIVE_KEYS:
                result[key] = f"[REDACTED:{key_lower.upper()}]"
            else:
                result[key] = redact_sensitive_data(value, max_depth=max_depth - 1)
        return result

    if isinstance(data, (list, tuple)):
        items = [redact_sensitive_data(item, max_depth=max_depth - 1) for item in data]
        return type(data)(items) if isinstance(data, tuple) else items

    return data
