"""Configuration package for retryguard.

Sub-modules:
    parsing  – Boolean and typed value parsing helpers
    loader   – RetrySettings loading mixin (_RetrySettingsLoader)
    settings – RetrySettings dataclass, get_settings/set_settings globals
"""

from retryguard.config.loader import ENV_VARS
from retryguard.config.settings import (
    RetrySettings,
    get_settings,
    set_settings,
)

__all__ = [
    "ENV_VARS",
    "RetrySettings",
    "get_settings",
    "set_settings",
]
