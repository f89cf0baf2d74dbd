"""
Dispatch configuration.

Listener failures are reported, not raised, unless a test or debugging
session asks for them to surface. Defaults can be overridden from the
environment:

    LENSING_RAISE_LISTENER_ERRORS=1
    LENSING_MAX_FAILURES=500
    LENSING_LOG_LEVEL=ERROR
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, value: str) -> bool:
    s = value.strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"{name}={value!r} is not a boolean")


@dataclass
class DispatchConfig:
    """Configuration for a Dispatcher."""

    # Re-raise the first listener failure once all listeners have run
    raise_listener_errors: bool = False

    # Number of ListenerInvocationFailure records kept on the dispatcher
    max_failures: int = 100

    # Level at which listener failures are logged
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.max_failures < 0:
            raise ValueError(f"max_failures must be >= 0, got {self.max_failures}")
        level = logging.getLevelName(str(self.log_level).upper())
        if not isinstance(level, int):
            raise ValueError(f"unknown log level {self.log_level!r}")
        self.log_level = str(self.log_level).upper()

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DispatchConfig":
        """
        Build a config from LENSING_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ.

        Returns:
            DispatchConfig with defaults for unset variables.

        Raises:
            ValueError: If a variable is set to something unparseable.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if "LENSING_RAISE_LISTENER_ERRORS" in env:
            config.raise_listener_errors = _parse_bool(
                "LENSING_RAISE_LISTENER_ERRORS", env["LENSING_RAISE_LISTENER_ERRORS"]
            )
        if "LENSING_MAX_FAILURES" in env:
            raw = env["LENSING_MAX_FAILURES"]
            try:
                config.max_failures = int(raw)
            except ValueError as exc:
                raise ValueError(f"LENSING_MAX_FAILURES={raw!r} is not an integer") from exc
        if "LENSING_LOG_LEVEL" in env:
            config.log_level = env["LENSING_LOG_LEVEL"]
        # Re-run validation on the overridden fields
        config.__post_init__()
        return config

    @classmethod
    def from_env_or_default(cls, environ: Optional[Mapping[str, str]] = None) -> "DispatchConfig":
        """Like from_env(), but log a malformed variable and use defaults."""
        try:
            return cls.from_env(environ)
        except ValueError as exc:
            logger.warning("ignoring LENSING_* environment settings: %s", exc)
            return cls()
