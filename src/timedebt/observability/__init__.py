"""observability/ - structlog setup for timedebt."""

from timedebt.observability.logger import get_logger, setup_logging, setup_logging_from_settings

__all__ = ["get_logger", "setup_logging", "setup_logging_from_settings"]
