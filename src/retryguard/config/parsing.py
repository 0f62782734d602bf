"""Parsing helpers for configuration values.

Provides boolean parsing and typed coercion used by the settings loader.
"""

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def _try_parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    return None


def _strict_bool(value: Any) -> bool:
    parsed = _try_parse_bool(value)
    if parsed is None:
        raise ValueError(f"not a boolean: {value!r}")
    return parsed


def _positive_int(value: Any) -> int:
    parsed = int(value)
    if parsed < 1:
        raise ValueError(f"must be >= 1: {value!r}")
    return parsed


def _non_negative_float(value: Any) -> float:
    parsed = float(value)
    if not parsed >= 0:
        raise ValueError(f"must be >= 0: {value!r}")
    return parsed


def _positive_float(value: Any) -> float:
    parsed = float(value)
    if not parsed > 0:
        raise ValueError(f"must be > 0: {value!r}")
    return parsed


def _fraction(value: Any) -> float:
    parsed = float(value)
    if not 0.0 <= parsed <= 1.0:
        raise ValueError(f"must be within [0, 1]: {value!r}")
    return parsed


def _non_empty_str(value: Any) -> str:
    text = str(value).strip()
    if not text:
        raise ValueError("empty string")
    return text


def _coerce(
    name: str,
    raw: Any,
    converter: Callable[[Any], Any],
    current: Any,
    *,
    source: str,
) -> Any:
    """Convert *raw* with *converter*, keeping *current* on failure.

    Booleans are rejected for numeric settings so ``true`` in TOML is not
    silently read as ``1``.
    """
    if isinstance(raw, bool) and converter not in (_strict_bool, _non_empty_str):
        logger.warning("Invalid value for %s from %s: %r; keeping %r", name, source, raw, current)
        return current
    try:
        return converter(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid value for %s from %s: %r; keeping %r", name, source, raw, current)
        return current
