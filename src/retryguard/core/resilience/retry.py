"""Async retry with exponential backoff, jitter, and one-shot escalation.

``execute_with_retry`` drives one call sequence through the states

    Attempting -> Succeeded
    Attempting -> Escalating -> Attempting | Waiting | Exhausted
    Attempting -> Waiting -> Attempting
    Attempting -> Exhausted

and terminates with ``OperationCancelledError`` from any state when the
caller's cancellation token fires. Sequences share no mutable state, so
the engine is safe to call concurrently.
"""

import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from retryguard.core.cancellation import CancellationToken, run_cancellable
from retryguard.core.errors.resilience import (
    OperationCancelledError,
    RetryExhaustedError,
)
from retryguard.core.observability import audit_log, redact_secrets
from retryguard.core.resilience.classifier import classify_failure
from retryguard.core.resilience.models import (
    AttemptState,
    EscalationOutcome,
    FailureClassification,
    RetryConfig,
    SleepFunc,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exponent cap so huge attempt counts cannot overflow float math
_MAX_BACKOFF_EXPONENT = 62


def base_backoff_delay(attempt: int, initial_delay: float, max_delay: float) -> float:
    """Un-jittered delay before the attempt after *attempt* (1-based).

    ``min(max_delay, initial_delay * 2 ** (attempt - 1))``; monotonically
    non-decreasing in *attempt*.
    """
    exponent = min(max(attempt - 1, 0), _MAX_BACKOFF_EXPONENT)
    return min(max_delay, initial_delay * (2.0**exponent))


def compute_backoff_delay(
    attempt: int,
    *,
    initial_delay: float,
    max_delay: float,
    jitter: float = 0.0,
    rng: Optional[random.Random] = None,
    retry_after: Optional[float] = None,
) -> float:
    """Compute the wait before the next attempt.

    A server-provided *retry_after* wins over exponential backoff and is
    not jittered. Otherwise the base delay is scaled by a factor drawn
    uniformly from ``[1 - jitter, 1 + jitter]``. Both paths are clamped to
    ``[0, max_delay]``.

    Args:
        attempt: The attempt that just failed (1-based).
        initial_delay: Delay after the first failure, in seconds.
        max_delay: Cap for any delay, in seconds.
        jitter: Symmetric jitter fraction (0.0-1.0).
        rng: Injectable Random instance for deterministic testing.
        retry_after: Server-provided delay in seconds, if any.

    Returns:
        Delay in seconds.
    """
    if retry_after is not None:
        return min(max(retry_after, 0.0), max_delay)

    delay = base_backoff_delay(attempt, initial_delay, max_delay)
    if jitter > 0:
        _rng = rng or random.Random()
        jitter_factor = (1.0 - jitter) + (2.0 * jitter * _rng.random())
        delay = delay * jitter_factor
    return min(max(delay, 0.0), max_delay)


def _log_retry_attempt(attempt: int, classification: FailureClassification, delay: float) -> None:
    """Log a retry; 5xx at ERROR, everything else at WARNING."""
    status = classification.status
    if status is not None:
        message = "Attempt %d failed with status %s. Retrying after %.2fs..."
        args: tuple = (attempt, status, delay)
    else:
        message = "Attempt %d failed (%s). Retrying after %.2fs..."
        args = (attempt, classification.kind.value, delay)

    if status is not None and 500 <= status < 600:
        logger.error(message, *args)
    else:
        logger.warning(message, *args)


async def _run_escalation(
    config: RetryConfig,
    failure: BaseException,
    cancel_token: Optional[CancellationToken],
    attempts: int,
) -> EscalationOutcome:
    """Invoke the escalation callback and normalize its result.

    A handler that raises, returns ``None``, or returns something other
    than an EscalationOutcome is treated as CONTINUE.
    """
    callback = config.on_persistent_rate_limit
    assert callback is not None
    try:
        result: Any = callback(config.auth_context, failure)
        if inspect.isawaitable(result):
            result = await run_cancellable(result, cancel_token, attempts=attempts, phase="escalation")
    except OperationCancelledError:
        raise
    except Exception as e:
        logger.warning(
            "Escalation handler failed, continuing with original error: %s",
            redact_secrets(str(e)),
        )
        return EscalationOutcome.continue_()

    if result is None:
        return EscalationOutcome.continue_()
    if not isinstance(result, EscalationOutcome):
        logger.warning(
            "Escalation handler returned %s instead of EscalationOutcome; continuing",
            type(result).__name__,
        )
        return EscalationOutcome.continue_()
    return result


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    *,
    cancel_token: Optional[CancellationToken] = None,
    rng: Optional[random.Random] = None,
    sleep_func: Optional[SleepFunc] = None,
) -> T:
    """Run *operation* until it succeeds, fails fatally, or runs out of attempts.

    On each failure the classifier decides the path:
    1. CANCELLED failures (or a fired token) end the sequence immediately
    2. The first RATE_LIMITED failure is offered to the escalation callback,
       which may replace the operation (attempts restart at 1), continue,
       or abort
    3. Retryable failures below ``max_attempts`` wait (retry-after or
       jittered exponential backoff) and try again
    4. Anything else raises RetryExhaustedError chained from the failure

    Args:
        operation: Zero-argument async callable (use a lambda for args).
        config: Retry configuration (defaults to process-wide settings).
        cancel_token: Optional token that aborts attempts and waits.
        rng: Injectable Random instance for deterministic jitter.
        sleep_func: Injectable sleep function for time control in tests.

    Returns:
        Result of the first successful attempt.

    Raises:
        RetryExhaustedError: Final failure, with attempts and elapsed time.
        OperationCancelledError: The cancellation token fired.

    Example:
        >>> result = await execute_with_retry(
        ...     lambda: guarded_fetch(url, 10.0, raise_for_status=True),
        ...     RetryConfig(max_attempts=3, initial_delay=0.5, max_delay=8.0),
        ... )
    """
    config = config or RetryConfig.from_settings()
    _rng = rng or random.Random()
    _sleep = sleep_func or asyncio.sleep
    state = AttemptState()
    current: Callable[[], Awaitable[Any]] = operation

    def _cancelled(error: OperationCancelledError) -> OperationCancelledError:
        audit_log(
            "retry_cancelled",
            attempt=state.attempt,
            total_attempts=state.total_attempts,
            phase=error.phase,
            elapsed_ms=int(state.elapsed() * 1000),
        )
        logger.info("Retry sequence cancelled during %s", error.phase or "attempt")
        return error

    def _exhausted(
        failure: BaseException,
        classification: FailureClassification,
        reason: str,
    ) -> RetryExhaustedError:
        elapsed = state.elapsed()
        audit_log(
            "retry_exhausted",
            attempts=state.attempt,
            total_attempts=state.total_attempts,
            reason=reason,
            status=classification.status,
            failure_kind=classification.kind.value,
            elapsed_ms=int(elapsed * 1000),
        )
        return RetryExhaustedError(
            classification.message,
            last_error=failure,
            classification=classification,
            attempts=state.attempt,
            elapsed_seconds=elapsed,
        )

    while True:
        state.total_attempts += 1
        try:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(attempts=state.total_attempts - 1, phase="attempt")
            return await run_cancellable(
                current(),
                cancel_token,
                attempts=state.total_attempts,
                phase="attempt",
            )
        except OperationCancelledError as e:
            raise _cancelled(e)
        except Exception as e:
            failure = e

        classification = classify_failure(
            failure,
            config.auth_type,
            config.user_tier,
            config.current_model,
            config.fallback_model,
            max_message_length=config.max_message_length,
        )

        if cancel_token is not None:
            try:
                cancel_token.raise_if_cancelled(attempts=state.total_attempts, phase="attempt")
            except OperationCancelledError as e:
                raise _cancelled(e) from failure

        # Escalating: first rate-limit failure of the sequence only
        if (
            classification.is_rate_limit
            and config.on_persistent_rate_limit is not None
            and not state.escalated
        ):
            state.escalated = True
            try:
                outcome = await _run_escalation(config, failure, cancel_token, state.total_attempts)
            except OperationCancelledError as e:
                raise _cancelled(e) from failure
            audit_log(
                "escalation",
                attempt=state.attempt,
                outcome=outcome.tag,
                quota_kind=classification.quota_kind.value,
                status=classification.status,
            )
            if outcome.tag == EscalationOutcome.REPLACE:
                logger.info("Escalation replaced the operation; restarting attempts")
                assert outcome.operation is not None
                current = outcome.operation
                state.reset_for_new_operation()
                continue
            if outcome.tag == EscalationOutcome.ABORT:
                raise _exhausted(failure, classification, "escalation_abort") from failure

        if state.attempt >= config.max_attempts:
            raise _exhausted(failure, classification, "max_attempts") from failure
        if not config.should_retry(classification, config.auth_context):
            raise _exhausted(failure, classification, "not_retryable") from failure

        # Waiting
        delay = compute_backoff_delay(
            state.attempt,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            rng=_rng,
            retry_after=classification.retry_after,
        )
        state.delay = delay
        _log_retry_attempt(state.attempt, classification, delay)
        audit_log(
            "retry_attempt",
            attempt=state.attempt,
            max_attempts=config.max_attempts,
            failure_kind=classification.kind.value,
            status=classification.status,
            delay_ms=int(delay * 1000),
            retry_after=classification.retry_after is not None,
        )
        try:
            await run_cancellable(_sleep(delay), cancel_token, attempts=state.total_attempts, phase="wait")
        except OperationCancelledError as e:
            raise _cancelled(e) from failure
        state.attempt += 1
