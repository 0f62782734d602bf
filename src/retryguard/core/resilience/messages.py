"""User-facing rate-limit and quota messages.

The wording depends on how the caller authenticates, the caller's tier,
and whether a fallback model is available to downgrade to. Every message
starts with a newline because it is appended to the ``[API Error: ...]``
line produced by the classifier.
"""

from typing import Optional

from retryguard.core.resilience.models import AuthType, QuotaKind, UserTier

DEFAULT_MODEL = "gemini-2.5-pro"

_UPGRADE_ADVICE = (
    "To increase your limits, upgrade to a plan with higher limits, "
    "or switch to a paid API key."
)
_PAID_THANKS = "We appreciate you for choosing a paid plan."

RATE_LIMIT_MESSAGE_API_KEY = (
    "\nRate limit reached, retrying with backoff. Please wait and try again later. "
    "To increase your limits, request a quota increase through AI Studio, "
    "or switch to another auth method."
)
RATE_LIMIT_MESSAGE_VERTEX = (
    "\nRate limit reached, retrying with backoff. Please wait and try again later. "
    "To increase your limits, request a quota increase through Vertex, "
    "or switch to another auth method."
)


def _pro_quota_message(current_model: str, fallback_model: str, paid: bool) -> str:
    text = (
        f"\nYou have reached your daily {current_model} quota limit. "
        f"Requests are being downgraded to the {fallback_model} model "
        "for the rest of this session."
    )
    if paid:
        return (
            f"{text} {_PAID_THANKS} To continue accessing the {current_model} model "
            "today, consider switching to a paid API key."
        )
    return f"{text} {_UPGRADE_ADVICE}"


def _generic_rate_limit_message(
    current_model: str,
    fallback_model: Optional[str],
    paid: bool,
) -> str:
    text = "\nRate limit reached, retrying with backoff."
    if fallback_model:
        text += (
            " Possible quota limitations in place or slow response times detected;"
            f" requests may be switched to the {fallback_model} model if this persists."
        )
    if paid:
        return (
            f"{text} {_PAID_THANKS} To keep using the {current_model} model without "
            "interruption, consider switching to a paid API key."
        )
    return f"{text} {_UPGRADE_ADVICE}"


def rate_limit_message(
    quota_kind: QuotaKind,
    auth_type: Optional[AuthType] = None,
    user_tier: Optional[UserTier] = None,
    current_model: Optional[str] = None,
    fallback_model: Optional[str] = None,
) -> str:
    """Return the policy sentence for a rate-limited failure.

    Args:
        quota_kind: Result of quota detection (NONE is treated as generic).
        auth_type: How the caller authenticates; ``None`` uses login wording.
        user_tier: Caller tier; unknown tiers are treated as free.
        current_model: Model the request targeted.
        fallback_model: Model the caller can be downgraded to, if any.

    Returns:
        Message text beginning with a newline.
    """
    if auth_type == AuthType.USE_GEMINI:
        return RATE_LIMIT_MESSAGE_API_KEY
    if auth_type == AuthType.USE_VERTEX_AI:
        return RATE_LIMIT_MESSAGE_VERTEX

    paid = user_tier in (UserTier.LEGACY, UserTier.STANDARD)
    model = current_model or DEFAULT_MODEL

    if quota_kind == QuotaKind.PRO_QUOTA and fallback_model:
        return _pro_quota_message(model, fallback_model, paid)
    if quota_kind == QuotaKind.PRO_QUOTA:
        return f"\nYou have reached your daily {model} quota limit. Please wait and try again later."
    return _generic_rate_limit_message(model, fallback_model, paid)
