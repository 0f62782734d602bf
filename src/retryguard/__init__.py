"""retryguard - resilience layer for outbound network calls.

Classifies failures, retries transient ones with jittered exponential
backoff (escalating once on rate limits), and performs single guarded
HTTP fetches that refuse private/internal targets.

Usage:
    from retryguard import RetryConfig, execute_with_retry, guarded_fetch

    response = await execute_with_retry(
        lambda: guarded_fetch("https://example.com/data", 10.0, raise_for_status=True),
        RetryConfig(max_attempts=3, initial_delay=0.5, max_delay=8.0),
    )
"""

from retryguard.config import RetrySettings, get_settings, set_settings
from retryguard.core.cancellation import CancellationToken
from retryguard.core.errors import (
    FetchError,
    FetchTimeoutError,
    OperationCancelledError,
    RetryExhaustedError,
    UrlValidationError,
)
from retryguard.core.fetch import guarded_fetch, is_private_ip
from retryguard.core.resilience import (
    AuthType,
    EscalationOutcome,
    FailureClassification,
    FailureKind,
    QuotaKind,
    RetryConfig,
    UserTier,
    classify_failure,
    execute_with_retry,
    format_message,
    is_quota_failure,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    "execute_with_retry",
    "RetryConfig",
    "EscalationOutcome",
    "CancellationToken",
    # Classifier
    "classify_failure",
    "is_quota_failure",
    "format_message",
    "FailureClassification",
    "FailureKind",
    "QuotaKind",
    "AuthType",
    "UserTier",
    # Fetch
    "guarded_fetch",
    "is_private_ip",
    # Settings
    "RetrySettings",
    "get_settings",
    "set_settings",
    # Errors
    "FetchError",
    "FetchTimeoutError",
    "UrlValidationError",
    "OperationCancelledError",
    "RetryExhaustedError",
]
