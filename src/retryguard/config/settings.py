"""RetrySettings dataclass and global settings state.

This module defines the ``RetrySettings`` class (field declarations) and the
global ``get_settings`` / ``set_settings`` helpers. Loading logic lives in
the ``_RetrySettingsLoader`` mixin (``loader.py``) which ``RetrySettings``
inherits from.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from retryguard.config.loader import _RetrySettingsLoader


@dataclass
class RetrySettings(_RetrySettingsLoader):
    """Process-wide defaults for retry sequences and guarded fetches.

    Attributes:
        max_attempts: Attempts per operation before giving up
        initial_delay: First backoff delay (seconds)
        max_delay: Cap for any single backoff delay (seconds)
        jitter: Symmetric jitter fraction applied to backoff delays
        fetch_timeout: Default guarded fetch timeout (seconds)
        max_message_length: Truncation bound for user-facing error text
        resolve_dns: Resolve hostnames and reject private resolved IPs
        default_model: Model named in quota messages when none is given
        fallback_model: Model offered as the downgrade target
    """

    max_attempts: int = 5
    initial_delay: float = 5.0
    max_delay: float = 30.0
    jitter: float = 0.3
    fetch_timeout: float = 10.0
    max_message_length: int = 1000
    resolve_dns: bool = True
    default_model: str = "gemini-2.5-pro"
    fallback_model: str = "gemini-2.5-flash"

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "RetrySettings":
        """Create settings from TOML dict (typically [retry] section).

        Invalid values are logged and replaced by the defaults.

        Args:
            data: Dict from TOML parsing

        Returns:
            RetrySettings instance
        """
        settings = cls()
        settings._apply(data, source="[retry]")
        settings._validate()
        return settings


_settings: Optional[RetrySettings] = None


def get_settings() -> RetrySettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = RetrySettings.from_env()
    return _settings


def set_settings(settings: Optional[RetrySettings]) -> None:
    """Set the global settings instance (``None`` reloads on next access)."""
    global _settings
    _settings = settings
