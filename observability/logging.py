"""
FanZone - Structured Logging

Configures structlog on top of the standard library so every runtime
component logs short event names with keyword context. When an
OpenTelemetry span is active its trace_id and span_id are attached to the
record, which lets bootstrap failures be correlated with traces.

Usage:
    from observability.logging import get_logger

    logger = get_logger("fanzone.container")
    logger.info("Service registered", service="repository", singleton=True)
"""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_configured: bool = False

# Chatty third-party loggers held at WARNING regardless of the app level
_QUIET_LOGGERS = ("asyncio", "opentelemetry")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LoggingConfig:
    """Settings for the structlog pipeline and its stdlib handlers."""

    service_name: str = "fanzone"
    level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    json_format: bool = field(
        default_factory=lambda: os.getenv("LOG_FORMAT", "json").lower() == "json"
    )
    enable_trace_context: bool = True
    log_to_console: bool = True
    log_to_file: bool = field(default_factory=lambda: _env_flag("LOG_TO_FILE", "false"))
    log_file_path: Path = field(
        default_factory=lambda: Path(os.getenv("LOG_FILE", "./logs/fanzone.log"))
    )
    max_file_size: int = 5 * 1024 * 1024
    backup_count: int = 3
    environment: str = field(
        default_factory=lambda: os.getenv("ENVIRONMENT", "development")
    )

    @property
    def numeric_level(self) -> int:
        value = logging.getLevelName(self.level)
        return value if isinstance(value, int) else logging.INFO


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

def add_trace_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Attach the current OpenTelemetry trace and span ids, if any."""
    from opentelemetry import trace

    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def service_stamp(service_name: str, environment: str) -> Processor:
    """Processor stamping service name and environment unless already set."""

    def stamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("environment", environment)
        return event_dict

    return stamp


def utc_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _build_processors(config: LoggingConfig) -> List[Processor]:
    chain: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        service_stamp(config.service_name, config.environment),
        utc_timestamp,
    ]
    if config.enable_trace_context:
        chain.append(add_trace_context)

    chain += [
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if config.json_format:
        chain.append(structlog.processors.JSONRenderer(default=str))
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def _build_handlers(config: LoggingConfig) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if config.log_to_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.log_to_file:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                config.log_file_path,
                maxBytes=config.max_file_size,
                backupCount=config.backup_count,
            )
        )

    # structlog has already rendered the line
    plain = logging.Formatter("%(message)s")
    for handler in handlers:
        handler.setFormatter(plain)
    return handlers


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Only the first call takes effect; call shutdown_logging() first to
    apply a different configuration.
    """
    global _configured
    if _configured:
        return

    config = config or LoggingConfig()

    structlog.configure(
        processors=_build_processors(config),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in _build_handlers(config):
        root.addHandler(handler)
    root.setLevel(config.numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def shutdown_logging() -> None:
    """Detach, flush and close root handlers, and allow setup_logging() to run again."""
    global _configured

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        try:
            handler.flush()
        except ValueError:
            # Stream already closed by whoever owned it (e.g. a test runner)
            pass
        handler.close()

    structlog.reset_defaults()
    _configured = False


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound logger, configuring defaults on first use."""
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)


class LogContext:
    """
    Bind keyword values to every record logged inside the block.

    Example:
        >>> with LogContext(phase="bootstrap"):
        ...     logger.info("Initializing DI container")
    """

    def __init__(self, **values: Any):
        self.values: Dict[str, Any] = values
        self._tokens: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.values)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
