"""Core resilience operations for retryguard."""

from retryguard.core.cancellation import CancellationToken, run_cancellable
from retryguard.core.context import correlation_context, get_correlation_id
from retryguard.core.fetch import (
    guarded_fetch,
    is_private_ip,
    validate_url,
    validate_url_async,
)
from retryguard.core.resilience import (
    EscalationOutcome,
    FailureClassification,
    FailureKind,
    QuotaKind,
    RetryConfig,
    classify_failure,
    execute_with_retry,
)

__all__ = [
    "CancellationToken",
    "run_cancellable",
    "correlation_context",
    "get_correlation_id",
    "guarded_fetch",
    "is_private_ip",
    "validate_url",
    "validate_url_async",
    "EscalationOutcome",
    "FailureClassification",
    "FailureKind",
    "QuotaKind",
    "RetryConfig",
    "classify_failure",
    "execute_with_retry",
]
