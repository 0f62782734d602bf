"""Guarded fetch error classes."""

from typing import Optional


class FetchError(Exception):
    """A single guarded fetch failed at the transport layer.

    Attributes:
        code: Short machine-readable code (e.g. ``ETIMEDOUT``), if any.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class FetchTimeoutError(FetchError):
    """The fetch did not receive a response before its timeout elapsed.

    Attributes:
        timeout_seconds: The timeout that was exceeded.
        url: The URL that was being fetched.
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, code="ETIMEDOUT")
        self.timeout_seconds = timeout_seconds
        self.url = url


class UrlValidationError(ValueError):
    """Raised when URL validation fails (SSRF protection).

    Attributes:
        url: The URL that failed validation.
        reason: Human-readable explanation of the failure.
        error_code: Machine-readable error code (INVALID_URL or BLOCKED_HOST).
    """

    def __init__(self, url: str, reason: str, error_code: str = "INVALID_URL"):
        self.url = url
        self.reason = reason
        self.error_code = error_code
        super().__init__(f"URL validation failed for {url!r}: {reason}")
