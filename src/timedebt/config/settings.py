"""
config/settings.py - timedebt Runtime Settings

Merges an optional YAML file (defaults/structure) with environment
variables. Pydantic-powered - all fields are validated and typed.

  - LoopConfig validates rates, thresholds and the async wait mode
  - LoggingConfig validates the log level
  - validate_all() performs cross-field validation and raises ConfigError
    with a human-readable message listing every problem found
  - load_settings() respects the TIMEDEBT_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import math
import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from timedebt.exceptions import ConfigError


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_WAIT_MODES = {"suspend", "block"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class LoopConfig(BaseModel):
    """
    Defaults applied by RateLoop.from_settings().

    default_rate_hz   Target iterations per second when none is given.
    lag_warn_s        Log rate_loop.lagging once carried debt exceeds this.
                      None disables lag warnings.
    sleep_slack_s     Spin for the last slack seconds of each blocking wait.
                      0 means a plain time.sleep().
    async_wait_mode   "suspend" (asyncio.sleep) or "block" (time.sleep on
                      the event loop thread).
    """
    default_rate_hz: float = 60.0
    lag_warn_s: Optional[float] = 0.25
    sleep_slack_s: float = 0.0
    async_wait_mode: str = "suspend"

    @field_validator("default_rate_hz")
    @classmethod
    def _positive_rate(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError("loop.default_rate_hz must be a finite number > 0")
        return v

    @field_validator("lag_warn_s")
    @classmethod
    def _non_negative_lag(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("loop.lag_warn_s must be >= 0 (or null to disable)")
        return v

    @field_validator("sleep_slack_s")
    @classmethod
    def _non_negative_slack(cls, v: float) -> float:
        if v < 0:
            raise ValueError("loop.sleep_slack_s must be >= 0")
        return v

    @field_validator("async_wait_mode")
    @classmethod
    def _valid_wait_mode(cls, v: str) -> str:
        lower = v.lower()
        if lower not in _VALID_WAIT_MODES:
            raise ValueError(
                f"loop.async_wait_mode '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_WAIT_MODES)}"
            )
        return lower


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper

    @field_validator("max_file_size_mb", "backup_count")
    @classmethod
    def _positive_rotation(cls, v: int) -> int:
        if v < 1:
            raise ValueError("logging rotation values must be >= 1")
        return v


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    timedebt runtime settings.

    Priority (highest to lowest):
      1. Sections passed to the constructor (load_settings() passes YAML here)
      2. Environment variables (e.g. LOOP__LAG_WARN_S=0.1)
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    loop: LoopConfig = Field(default_factory=LoopConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("loop", mode="before")
    @classmethod
    def _coerce_loop(cls, v: Any) -> Any:
        return LoopConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def blocking_async_wait(self) -> bool:
        return self.loop.async_wait_mode == "block"

    def validate_all(self) -> None:
        """
        Cross-field validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this catches
        combinations that are individually valid but unusable together.
        """
        errors: list[str] = []
        interval_s = 1.0 / self.loop.default_rate_hz

        # ── Spin slack must leave room to actually sleep ─────────────────────
        if self.loop.sleep_slack_s >= interval_s:
            errors.append(
                f"loop.sleep_slack_s ({self.loop.sleep_slack_s}s) is not smaller "
                f"than one interval at loop.default_rate_hz "
                f"({interval_s:.6f}s); every wait would busy-spin."
            )

        # ── Lag threshold no smaller than a tenth of one interval ────────────
        if self.loop.lag_warn_s is not None and 0 < self.loop.lag_warn_s < interval_s / 10:
            errors.append(
                f"loop.lag_warn_s ({self.loop.lag_warn_s}s) is below a tenth of "
                f"one interval ({interval_s:.6f}s); use null to disable warnings."
            )

        if self.logging.log_dir is not None and not self.logging.log_dir.strip():
            errors.append("logging.log_dir must not be empty. Use null to disable file logging.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\ntimedebt configuration invalid - {len(errors)} "
                f"problem(s) found:\n\n{numbered}\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"loop", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Optional[Path]:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument
      2. TIMEDEBT_CONFIG environment variable
      3. None (defaults + environment only)
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("TIMEDEBT_CONFIG")
    if env_path:
        return Path(env_path)
    return None


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging the YAML file (if any) with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path) if resolved_path is not None else {}
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it on first use.

    Thread-safe: guarded by _singleton_lock to prevent double-initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings()
    return _singleton


def reset_settings() -> None:
    """Drop the cached singleton (used by tests)."""
    global _singleton
    with _singleton_lock:
        _singleton = None
