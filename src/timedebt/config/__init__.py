"""config/ - pydantic-settings configuration for timedebt."""

from timedebt.config.settings import (
    LoggingConfig,
    LoopConfig,
    Settings,
    get_settings,
    load_settings,
)

__all__ = ["LoggingConfig", "LoopConfig", "Settings", "get_settings", "load_settings"]
