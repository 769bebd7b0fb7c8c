"""
exceptions.py - timedebt Error Hierarchy

Every error raised by timedebt itself is a subclass of TimeDebtError.
Exceptions raised by caller-supplied callbacks (timed, skip_act,
pre_timed, loop_predicate) are never wrapped: they propagate unchanged.

Hierarchy:
    TimeDebtError
    ├── InvalidRateError   (also a ValueError)
    └── ConfigError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class TimeDebtError(Exception):
    """Base class for all timedebt exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Loop layer
# ─────────────────────────────────────────────────────────────────────────────

class InvalidRateError(TimeDebtError, ValueError):
    """target_rate is not a finite number greater than zero."""

    def __init__(self, rate: object, message: str = "") -> None:
        self.rate = rate
        super().__init__(
            message or f"target_rate must be a finite number > 0, got {rate!r}"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Config layer
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(TimeDebtError):
    """Raised by Settings.validate_all() when one or more config problems are found."""


__all__ = [
    "TimeDebtError",
    "InvalidRateError",
    "ConfigError",
]
