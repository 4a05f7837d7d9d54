"""
FanZone - Core Module

Foundational runtime pieces shared by every other package:
- Typed error hierarchy with categories attached where errors are raised
- Error classification, bounded error log and recovery dispatch
- Service validation and fallback wrapping for graceful degradation
- Local key-value storage for flags and offline copies
- Retry policy for transient failures

Usage:
    from core import ErrorHandler, ServiceValidator, FanZoneError

    handler = ErrorHandler()
    validator = ServiceValidator(error_handler=handler)
    users = validator.create_fallback_wrapper(users, "UserService", fallbacks)
"""

from core.error_handler import (
    ErrorHandler,
    ErrorInfo,
    ErrorLogEntry,
    RecoveryAction,
)
from core.errors import (
    AuthenticationBootstrapError,
    AuthenticationError,
    BootstrapError,
    ContainerError,
    CyclicDependencyError,
    DependencyContractViolation,
    ErrorCategory,
    ErrorSeverity,
    EventBusTimeoutError,
    FanZoneError,
    InvalidFactoryError,
    MethodMissingError,
    MethodNotCallableError,
    PlatformError,
    RepositoryError,
    ServiceInitializationRequiredError,
    ServiceInvalidTypeError,
    ServiceMissingError,
    ServiceNotInitializedError,
    ServiceNotRegisteredError,
    ServiceValidationError,
)
from core.resilience import RetryConfig, RetryPolicy, with_retry
from core.storage import JsonFileStore, KeyValueStore, MemoryStore, create_store
from core.validation import (
    FallbackWrapper,
    ServiceHealth,
    ServiceValidator,
    ValidatedProxy,
)

__all__ = [
    # Errors
    "FanZoneError",
    "ErrorCategory",
    "ErrorSeverity",
    "ContainerError",
    "ServiceNotRegisteredError",
    "InvalidFactoryError",
    "CyclicDependencyError",
    "DependencyContractViolation",
    "ServiceValidationError",
    "ServiceMissingError",
    "ServiceInvalidTypeError",
    "ServiceNotInitializedError",
    "ServiceInitializationRequiredError",
    "MethodMissingError",
    "MethodNotCallableError",
    "BootstrapError",
    "AuthenticationBootstrapError",
    "AuthenticationError",
    "EventBusTimeoutError",
    "PlatformError",
    "RepositoryError",
    # Error handling
    "ErrorHandler",
    "ErrorInfo",
    "ErrorLogEntry",
    "RecoveryAction",
    # Validation
    "ServiceValidator",
    "ServiceHealth",
    "ValidatedProxy",
    "FallbackWrapper",
    # Storage
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "create_store",
    # Resilience
    "RetryConfig",
    "RetryPolicy",
    "with_retry",
]
