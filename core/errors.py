"""
FanZone - Error Hierarchy

Typed exceptions raised by the service runtime. Every class carries the
category it belongs to, attached where it is raised, so the ErrorHandler
does not have to guess from message text. Textual classification is kept
only for exceptions that come from outside this hierarchy.

Each error records the active OpenTelemetry trace ids when it is created
and marks the span as failed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    """How far an error reaches: degraded operation up to a halted bootstrap."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"    # Degraded operation, application keeps running
    ERROR = "error"
    CRITICAL = "critical"  # Bootstrap cannot continue


class ErrorCategory(str, Enum):
    """User-facing error categories, in classification priority order."""

    TELEGRAM = "telegram"
    DATABASE = "database"
    SERVICE = "service"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    LOADING = "loading"
    UNKNOWN = "unknown"


class FanZoneError(Exception):
    """
    Base exception for all runtime errors.

    Subclasses pin ``error_code``, ``default_severity`` and
    ``default_category``; callers may override severity and category per
    instance. ``component`` names the service that raised it.
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    default_category: Optional[ErrorCategory] = None
    error_code: str = "FANZONE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        cause: Optional[BaseException] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.component = component
        self.severity = severity or self.default_severity
        self.category = category or self.default_category
        self.cause = cause
        self.recoverable = recoverable
        self.suggestions = list(suggestions or [])
        self.timestamp = datetime.now(timezone.utc)
        self.trace_id: Optional[str] = None
        self.span_id: Optional[str] = None

        self._mark_span()

    def _mark_span(self) -> None:
        span = trace.get_current_span()
        if not span.is_recording():
            return

        ctx = span.get_span_context()
        self.trace_id = format(ctx.trace_id, "032x")
        self.span_id = format(ctx.span_id, "016x")

        span.record_exception(self)
        span.set_status(Status(StatusCode.ERROR, self.message))
        span.set_attributes({
            "error.code": self.error_code,
            "error.severity": self.severity.value,
            "error.category": self.category.value if self.category else "unknown",
        })

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data view used by error log exports."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "component": self.component,
            "severity": self.severity.value,
            "category": self.category.value if self.category else None,
            "recoverable": self.recoverable,
            "suggestions": self.suggestions,
            "timestamp": self.timestamp.isoformat(),
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if self.component:
            text += f" (in {self.component})"
        if self.cause is not None:
            text += f" <- {self.cause}"
        return text


# =============================================================================
# Container errors
# =============================================================================


class ContainerError(FanZoneError):
    """Registration and resolution errors raised by the DI container."""

    error_code = "CONTAINER_ERROR"
    default_category = ErrorCategory.SERVICE


class ServiceNotRegisteredError(ContainerError):
    """Raised when resolving a name with no value, singleton or factory."""

    error_code = "SERVICE_NOT_REGISTERED"

    def __init__(self, service_name: str, **kwargs: Any):
        super().__init__(f"Service '{service_name}' is not registered", **kwargs)
        self.service_name = service_name


class InvalidFactoryError(ContainerError):
    """Raised when a registration's factory is not callable."""

    error_code = "INVALID_FACTORY"

    def __init__(self, service_name: str, factory: Any = None, **kwargs: Any):
        super().__init__(
            f"Factory for service '{service_name}' must be callable, "
            f"got {type(factory).__name__}",
            **kwargs,
        )
        self.service_name = service_name


class CyclicDependencyError(ContainerError):
    """Raised when a factory transitively depends on itself."""

    error_code = "CYCLIC_DEPENDENCY"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, path: Sequence[str], **kwargs: Any):
        self.path = list(path)
        super().__init__(
            f"Circular dependency detected: {' -> '.join(self.path)}",
            **kwargs,
        )


class DependencyContractViolation(FanZoneError):
    """
    An injected collaborator lacks capabilities its consumer cannot work without.

    Raised at construction time; never downgraded to a fallback.
    """

    error_code = "DEPENDENCY_CONTRACT_VIOLATION"
    default_severity = ErrorSeverity.CRITICAL
    default_category = ErrorCategory.SERVICE

    def __init__(
        self,
        dependency: str,
        missing: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ):
        self.dependency = dependency
        self.missing = list(missing or [])
        if self.missing:
            message = f"{dependency} is missing required methods: {', '.join(self.missing)}"
        else:
            message = f"{dependency} is required for controller initialization"
        super().__init__(message, **kwargs)


# =============================================================================
# Service validation errors
# =============================================================================


class ServiceValidationError(FanZoneError):
    """Base class for runtime contract checks on resolved services."""

    error_code = "SERVICE_VALIDATION_ERROR"
    default_severity = ErrorSeverity.WARNING
    default_category = ErrorCategory.SERVICE
    validation_type: str = "invalid"

    def __init__(
        self,
        message: str,
        service_name: str,
        method_name: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.service_name = service_name
        self.method_name = method_name


class ServiceMissingError(ServiceValidationError):
    error_code = "SERVICE_MISSING"
    validation_type = "missing"


class ServiceInvalidTypeError(ServiceValidationError):
    error_code = "SERVICE_INVALID_TYPE"
    validation_type = "invalid_type"


class ServiceNotInitializedError(ServiceValidationError):
    error_code = "SERVICE_NOT_INITIALIZED"
    validation_type = "not_initialized"


class ServiceInitializationRequiredError(ServiceValidationError):
    error_code = "SERVICE_INITIALIZATION_REQUIRED"
    validation_type = "initialization_required"


class MethodMissingError(ServiceValidationError):
    error_code = "METHOD_MISSING"
    validation_type = "missing_method"


class MethodNotCallableError(ServiceValidationError):
    error_code = "METHOD_NOT_CALLABLE"
    validation_type = "invalid_method"


# =============================================================================
# Bootstrap errors
# =============================================================================


class BootstrapError(FanZoneError):
    """
    A bootstrap phase failed.

    ``step`` names the phase; the category is taken from the original error
    when it is typed, so classification still reflects the root cause.
    """

    error_code = "BOOTSTRAP_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        step: str,
        original_error: Optional[BaseException] = None,
        **kwargs: Any,
    ):
        if "category" not in kwargs and self.default_category is None:
            kwargs["category"] = getattr(original_error, "category", None)
        kwargs.setdefault("cause", original_error)
        super().__init__(message, **kwargs)
        self.step = step
        self.original_error = original_error


class AuthenticationBootstrapError(BootstrapError):
    """No stored credential could be restored and fresh authentication failed."""

    error_code = "AUTHENTICATION_BOOTSTRAP_FAILED"
    default_category = ErrorCategory.AUTHENTICATION


# =============================================================================
# Subsystem errors
# =============================================================================


class EventBusTimeoutError(FanZoneError):
    """The event bus did not become ready before the deadline."""

    error_code = "EVENT_BUS_TIMEOUT"
    default_category = ErrorCategory.SERVICE

    def __init__(self, timeout_seconds: float, **kwargs: Any):
        kwargs.setdefault("recoverable", True)
        super().__init__(
            f"EventBus failed to become ready within {timeout_seconds}s",
            **kwargs,
        )
        self.timeout_seconds = timeout_seconds


class RepositoryError(FanZoneError):
    """Data repository operation errors."""

    error_code = "REPOSITORY_ERROR"
    default_category = ErrorCategory.DATABASE

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("component", "repository")
        super().__init__(message, **kwargs)
        self.table = table
        self.operation = operation


class PlatformError(FanZoneError):
    """Hosting platform (Telegram WebApp) errors."""

    error_code = "PLATFORM_ERROR"
    default_category = ErrorCategory.TELEGRAM

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("component", "platform")
        super().__init__(message, **kwargs)


class AuthenticationError(FanZoneError):
    """Authentication errors outside of bootstrap."""

    error_code = "AUTHENTICATION_ERROR"
    default_category = ErrorCategory.AUTHENTICATION
