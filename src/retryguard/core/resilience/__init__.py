"""Failure classification and retry-with-backoff for outbound calls.

Centralized resilience utilities including:
- Failure classification into transient / rate-limited / fatal / cancelled
- Quota detection and user-facing rate-limit messages
- Retry engine with exponential backoff, jitter, and one-shot escalation
"""

from retryguard.core.errors.resilience import (
    OperationCancelledError,
    RetryExhaustedError,
)
from retryguard.core.resilience.classifier import (
    UNKNOWN_ERROR_MESSAGE,
    classify_failure,
    extract_retry_after,
    extract_status,
    format_message,
    is_quota_failure,
)
from retryguard.core.resilience.messages import rate_limit_message
from retryguard.core.resilience.models import (
    AttemptState,
    AuthType,
    EscalationOutcome,
    FailureClassification,
    FailureKind,
    QuotaKind,
    RetryConfig,
    SleepFunc,
    UserTier,
    default_should_retry,
)
from retryguard.core.resilience.retry import (
    base_backoff_delay,
    compute_backoff_delay,
    execute_with_retry,
)

__all__ = [
    # Models & enums
    "FailureKind",
    "QuotaKind",
    "AuthType",
    "UserTier",
    "FailureClassification",
    "EscalationOutcome",
    "RetryConfig",
    "AttemptState",
    "SleepFunc",
    "default_should_retry",
    # Classifier
    "UNKNOWN_ERROR_MESSAGE",
    "classify_failure",
    "extract_status",
    "extract_retry_after",
    "format_message",
    "is_quota_failure",
    "rate_limit_message",
    # Retry
    "base_backoff_delay",
    "compute_backoff_delay",
    "execute_with_retry",
    # Error re-exports
    "OperationCancelledError",
    "RetryExhaustedError",
]
