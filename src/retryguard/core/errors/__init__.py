"""Unified error hierarchy for retryguard.

All custom exception classes are defined in domain-specific modules within
this package. This __init__.py re-exports everything for convenient access.

Usage:
    from retryguard.core.errors import FetchTimeoutError, RetryExhaustedError
"""

# --- Fetch errors ---
from retryguard.core.errors.fetch import (
    FetchError,
    FetchTimeoutError,
    UrlValidationError,
)

# --- Resilience errors ---
from retryguard.core.errors.resilience import (
    OperationCancelledError,
    RetryExhaustedError,
)

__all__ = [
    "FetchError",
    "FetchTimeoutError",
    "UrlValidationError",
    "OperationCancelledError",
    "RetryExhaustedError",
]
