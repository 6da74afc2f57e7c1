"""Configuration for the processing dispatcher and retry scheduler.

Create a configuration with defaults:

>>> config = ProcessingConfig()
>>> config.max_attempts
5

Or load from environment variables:

>>> import os
>>> os.environ["HUBMIRROR_MAX_ATTEMPTS"] = "3"
>>> ProcessingConfig.from_env().max_attempts
3

"""

from __future__ import annotations

import dataclasses as dc
import os

from hubmirror.processing.errors import ConfigError


@dc.dataclass(frozen=True, slots=True)
class ProcessingConfig:
    """Retry budget, backoff curve and batch sizing for periodic jobs.

    Attributes
    ----------
    max_attempts
        Number of failed handler attempts after which a delivery is
        dead-lettered. Default is 5.
    backoff_base_seconds
        Delay before the first retry. Each further failure doubles it.
    backoff_max_seconds
        Upper bound on the computed delay.
    backoff_jitter_ratio
        Fraction of the computed delay that may be added as random jitter.
        Default is 0, which keeps schedules deterministic.
    batch_size
        Maximum records a single dispatcher or scheduler run touches.

    """

    max_attempts: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 3600.0
    backoff_jitter_ratio: float = 0.0
    batch_size: int = 50

    def __post_init__(self) -> None:
        """Reject configurations that would break the backoff curve."""
        if self.max_attempts < 1:
            msg = f"max_attempts must be positive, got: {self.max_attempts}"
            raise ConfigError(msg)
        if self.batch_size < 1:
            msg = f"batch_size must be positive, got: {self.batch_size}"
            raise ConfigError(msg)
        if self.backoff_base_seconds <= 0:
            msg = (
                "backoff_base_seconds must be positive, got: "
                f"{self.backoff_base_seconds}"
            )
            raise ConfigError(msg)
        if self.backoff_max_seconds < self.backoff_base_seconds:
            msg = "backoff_max_seconds must not be smaller than backoff_base_seconds"
            raise ConfigError(msg)
        if not 0.0 <= self.backoff_jitter_ratio <= 1.0:
            msg = (
                "backoff_jitter_ratio must be between 0 and 1, got: "
                f"{self.backoff_jitter_ratio}"
            )
            raise ConfigError(msg)

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ConfigError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ConfigError(msg)
        return value

    @staticmethod
    def _parse_float(env_var: str, default: float) -> float:
        """Read a non-negative float env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            msg = f"{env_var} must be a number, got: {raw!r}"
            raise ConfigError(msg) from exc
        if value < 0:
            msg = f"{env_var} must not be negative, got: {value}"
            raise ConfigError(msg)
        return value

    @classmethod
    def from_env(cls) -> ProcessingConfig:
        """Create configuration from ``HUBMIRROR_*`` environment variables.

        Reads ``HUBMIRROR_MAX_ATTEMPTS``, ``HUBMIRROR_BACKOFF_BASE_SECONDS``,
        ``HUBMIRROR_BACKOFF_MAX_SECONDS``, ``HUBMIRROR_BACKOFF_JITTER_RATIO``
        and ``HUBMIRROR_BATCH_SIZE``.

        Raises
        ------
        ConfigError
            If any variable is set to a malformed or out-of-range value.

        """
        return cls(
            max_attempts=cls._parse_positive_int("HUBMIRROR_MAX_ATTEMPTS", 5),
            backoff_base_seconds=cls._parse_float(
                "HUBMIRROR_BACKOFF_BASE_SECONDS", 1.0
            ),
            backoff_max_seconds=cls._parse_float(
                "HUBMIRROR_BACKOFF_MAX_SECONDS", 3600.0
            ),
            backoff_jitter_ratio=cls._parse_float(
                "HUBMIRROR_BACKOFF_JITTER_RATIO", 0.0
            ),
            batch_size=cls._parse_positive_int("HUBMIRROR_BATCH_SIZE", 50),
        )
