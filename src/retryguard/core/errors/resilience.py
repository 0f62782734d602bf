"""Retry engine error classes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from retryguard.core.resilience.models import FailureClassification


class RetryExhaustedError(Exception):
    """A retry sequence ended without a successful result.

    Raised both when the attempt ceiling is reached and when a failure is
    not retryable. The exception is chained from the last failure.

    Attributes:
        last_error: The failure raised by the final attempt.
        classification: Classification of ``last_error``.
        attempts: Number of attempts made for the final operation.
        elapsed_seconds: Wall time spent in the whole sequence.
    """

    def __init__(
        self,
        message: str,
        last_error: BaseException,
        classification: Optional[FailureClassification] = None,
        attempts: int = 0,
        elapsed_seconds: float = 0.0,
    ):
        super().__init__(message)
        self.last_error = last_error
        self.classification = classification
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds


class OperationCancelledError(Exception):
    """The caller's cancellation signal fired during an attempt or a wait.

    Attributes:
        attempts: Attempts started before cancellation.
        phase: Where cancellation was observed (attempt, wait, fetch).
    """

    def __init__(
        self,
        message: str = "Operation cancelled",
        attempts: int = 0,
        phase: Optional[str] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.phase = phase
