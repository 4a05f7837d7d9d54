"""
FanZone - Observability Package

Structured logging with OpenTelemetry trace context propagation.

Usage:
    from observability import setup_logging, get_logger

    setup_logging(LoggingConfig(level="DEBUG", json_format=False))
    logger = get_logger("fanzone.app")
"""
from observability.logging import (
    LogContext,
    LoggingConfig,
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LogContext",
    "LoggingConfig",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
]
