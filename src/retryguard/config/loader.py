"""RetrySettings loading logic.

Provides ``_RetrySettingsLoader``, a mixin class whose methods are inherited
by ``RetrySettings`` (defined in ``settings.py``). Keeping loading out of
``settings.py`` leaves that module focused on field definitions.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, cast

if TYPE_CHECKING:
    from retryguard.config.settings import RetrySettings

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from retryguard.config.parsing import (
    _coerce,
    _fraction,
    _non_empty_str,
    _non_negative_float,
    _positive_float,
    _positive_int,
    _strict_bool,
)

logger = logging.getLogger(__name__)

_ENV_PREFIX = "RETRYGUARD_"
_CONFIG_FILE_ENV_VAR = "RETRYGUARD_CONFIG_FILE"

# field name -> converter; env var is RETRYGUARD_<FIELD>
_FIELD_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "max_attempts": _positive_int,
    "initial_delay": _non_negative_float,
    "max_delay": _non_negative_float,
    "jitter": _fraction,
    "fetch_timeout": _positive_float,
    "max_message_length": _positive_int,
    "resolve_dns": _strict_bool,
    "default_model": _non_empty_str,
    "fallback_model": _non_empty_str,
}

# Every variable from_env consults
ENV_VARS: Tuple[str, ...] = (_CONFIG_FILE_ENV_VAR,) + tuple(
    f"{_ENV_PREFIX}{name.upper()}" for name in _FIELD_CONVERTERS
)


class _RetrySettingsLoader:
    """Mixin providing config-loading methods for ``RetrySettings``.

    At runtime ``self`` is always a ``RetrySettings`` instance.
    """

    if TYPE_CHECKING:
        max_attempts: int
        initial_delay: float
        max_delay: float

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "RetrySettings":
        """
        Create settings from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables (RETRYGUARD_*)
        2. Explicit file (argument or RETRYGUARD_CONFIG_FILE), which
           replaces the layered files below
        3. Project TOML config (./retryguard.toml)
        4. User TOML config (~/.retryguard.toml)
        5. XDG config (~/.config/retryguard/config.toml)
        6. Default values
        """
        settings = cls()

        toml_path = config_file or os.environ.get(_CONFIG_FILE_ENV_VAR)
        if toml_path:
            settings._load_toml(Path(toml_path))
        else:
            # Layered config loading (lowest to highest priority)
            xdg_config_home = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
            xdg_config = Path(xdg_config_home) / "retryguard" / "config.toml"
            if xdg_config.exists():
                settings._load_toml(xdg_config)
                logger.debug("Loaded XDG config from %s", xdg_config)

            home_config = Path.home() / ".retryguard.toml"
            if home_config.exists():
                settings._load_toml(home_config)
                logger.debug("Loaded user config from %s", home_config)

            project_config = Path("retryguard.toml")
            if project_config.exists():
                settings._load_toml(project_config)
                logger.debug("Loaded project config from %s", project_config)

        settings._load_env()
        settings._validate()

        return cast("RetrySettings", settings)

    def _apply(self, values: Dict[str, Any], *, source: str) -> None:
        """Apply known keys from *values*; bad values keep the previous one."""
        for name, raw in values.items():
            converter = _FIELD_CONVERTERS.get(name)
            if converter is None:
                logger.warning("Unknown retry setting %r in %s; ignoring", name, source)
                continue
            current = getattr(self, name)
            setattr(self, name, _coerce(name, raw, converter, current, source=source))

    def _load_toml(self, path: Path) -> None:
        """Load the ``[retry]`` table from a TOML file."""
        if not path.exists():
            logger.warning("Config file not found: %s", path)
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Error loading config file %s: %s", path, e)
            return

        retry_cfg = data.get("retry")
        if retry_cfg is None:
            return
        if not isinstance(retry_cfg, dict):
            logger.warning("Ignoring [retry] in %s: expected a table", path)
            return
        self._apply(retry_cfg, source=str(path))

    def _load_env(self) -> None:
        """Load settings from RETRYGUARD_* environment variables."""
        env_values = {
            name: value
            for name in _FIELD_CONVERTERS
            if (value := os.environ.get(f"{_ENV_PREFIX}{name.upper()}"))
        }
        if env_values:
            self._apply(env_values, source="environment")

    def _validate(self) -> None:
        """Repair cross-field inconsistencies after all layers are applied."""
        if self.initial_delay > self.max_delay:
            logger.warning(
                "initial_delay (%s) exceeds max_delay (%s); clamping initial_delay",
                self.initial_delay,
                self.max_delay,
            )
            self.initial_delay = self.max_delay
