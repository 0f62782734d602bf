"""Resilience data models, enums, and protocols.

Defines the core types used across the resilience sub-package:
- FailureKind / QuotaKind enums for failure classification
- FailureClassification, the classifier's normalized output
- AuthType / UserTier message-formatting inputs
- EscalationOutcome, the tagged result of the escalation callback
- RetryConfig for one retry sequence, AttemptState for its progress
- SleepFunc protocol for injectable async sleep
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Union,
)

if TYPE_CHECKING:
    from retryguard.config.settings import RetrySettings


class FailureKind(str, Enum):
    """Tag assigned to every failure by the classifier."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"
    CANCELLED = "cancelled"


class QuotaKind(str, Enum):
    """Which quota, if any, a failure reports as exhausted."""

    NONE = "none"
    PRO_QUOTA = "pro_quota"
    GENERIC_QUOTA = "generic_quota"


class AuthType(str, Enum):
    """How the caller authenticates; selects rate-limit advice wording."""

    LOGIN_WITH_GOOGLE = "oauth-personal"
    USE_GEMINI = "gemini-api-key"
    USE_VERTEX_AI = "vertex-ai"
    CLOUD_SHELL = "cloud-shell"


class UserTier(str, Enum):
    """Subscription tier of the caller; free vs paid wording."""

    FREE = "free"
    LEGACY = "legacy"
    STANDARD = "standard"


@dataclass(frozen=True)
class FailureClassification:
    """Normalized view of a single failure.

    Derived fresh for each failure and never mutated. ``message`` is the
    only field meant for end users; the rest drive programmatic branching.
    """

    kind: FailureKind
    status: Optional[int] = None
    quota_kind: QuotaKind = QuotaKind.NONE
    message: str = ""
    retry_after: Optional[float] = None

    @property
    def is_rate_limit(self) -> bool:
        return self.kind == FailureKind.RATE_LIMITED

    @property
    def is_quota(self) -> bool:
        return self.quota_kind != QuotaKind.NONE


Operation = Callable[[], Awaitable[Any]]


class EscalationOutcome:
    """Tagged result returned by an ``on_persistent_rate_limit`` callback.

    Use the constructors rather than instantiating directly:

        EscalationOutcome.continue_()          # keep retrying with backoff
        EscalationOutcome.replace(new_op)      # restart with another operation
        EscalationOutcome.abort()              # stop and surface the failure
    """

    CONTINUE = "continue"
    REPLACE = "replace"
    ABORT = "abort"

    __slots__ = ("tag", "operation")

    def __init__(self, tag: str, operation: Optional[Operation] = None):
        if tag not in (self.CONTINUE, self.REPLACE, self.ABORT):
            raise ValueError(f"Unknown escalation outcome: {tag!r}")
        if tag == self.REPLACE and operation is None:
            raise ValueError("REPLACE outcome requires an operation")
        self.tag = tag
        self.operation = operation

    @classmethod
    def continue_(cls) -> "EscalationOutcome":
        return cls(cls.CONTINUE)

    @classmethod
    def replace(cls, operation: Operation) -> "EscalationOutcome":
        return cls(cls.REPLACE, operation)

    @classmethod
    def abort(cls) -> "EscalationOutcome":
        return cls(cls.ABORT)

    def __repr__(self) -> str:
        return f"EscalationOutcome({self.tag})"


ShouldRetry = Callable[[FailureClassification, Any], bool]
EscalationCallback = Callable[
    [Any, BaseException],
    Union[Optional[EscalationOutcome], Awaitable[Optional[EscalationOutcome]]],
]


def default_should_retry(classification: FailureClassification, auth_context: Any = None) -> bool:
    """Retry transient and rate-limited failures; never fatal or cancelled ones."""
    return classification.kind in (FailureKind.TRANSIENT, FailureKind.RATE_LIMITED)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for one retry sequence.

    Immutable: the engine reads it but never changes it, so one instance can
    be shared by concurrent sequences.

    Attributes:
        max_attempts: Hard ceiling on attempts per operation identity (>= 1).
        initial_delay: First backoff delay in seconds.
        max_delay: Cap for any single delay in seconds.
        should_retry: Predicate ``(classification, auth_context) -> bool``.
        on_persistent_rate_limit: Optional escalation callback
            ``(auth_context, failure) -> EscalationOutcome | None`` (sync or async).
        auth_context: Opaque token passed to the predicate and callback.
        jitter: Symmetric jitter fraction (0.3 => 70-130% of the base delay).
        auth_type: Message-formatting input.
        user_tier: Message-formatting input.
        current_model: Model named in quota messages.
        fallback_model: Model offered as the downgrade target.
        max_message_length: Truncation bound for passed-through messages.
    """

    max_attempts: int = 5
    initial_delay: float = 5.0
    max_delay: float = 30.0
    should_retry: ShouldRetry = default_should_retry
    on_persistent_rate_limit: Optional[EscalationCallback] = None
    auth_context: Any = None
    jitter: float = 0.3
    auth_type: Optional[AuthType] = None
    user_tier: Optional[UserTier] = None
    current_model: Optional[str] = None
    fallback_model: Optional[str] = None
    max_message_length: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.initial_delay > self.max_delay:
            raise ValueError(
                f"initial_delay ({self.initial_delay}) must not exceed max_delay ({self.max_delay})"
            )
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")
        if self.max_message_length < 1:
            raise ValueError(f"max_message_length must be >= 1, got {self.max_message_length}")

    @classmethod
    def from_settings(cls, settings: Optional["RetrySettings"] = None, **overrides: Any) -> "RetryConfig":
        """Build a config from process-wide settings plus per-call overrides.

        Args:
            settings: Settings to read (defaults to ``get_settings()``).
            **overrides: Field values that win over the settings.
        """
        if settings is None:
            from retryguard.config import get_settings

            settings = get_settings()
        values: dict[str, Any] = {
            "max_attempts": settings.max_attempts,
            "initial_delay": settings.initial_delay,
            "max_delay": settings.max_delay,
            "jitter": settings.jitter,
            "current_model": settings.default_model,
            "fallback_model": settings.fallback_model,
            "max_message_length": settings.max_message_length,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class AttemptState:
    """Progress of one in-flight retry sequence. Never shared."""

    attempt: int = 1
    delay: float = 0.0
    escalated: bool = False
    total_attempts: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def reset_for_new_operation(self) -> None:
        """Restart counting after the operation identity was replaced."""
        self.attempt = 1
        self.delay = 0.0


class SleepFunc(Protocol):
    """Protocol for injectable sleep function."""

    async def __call__(self, seconds: float) -> None: ...
