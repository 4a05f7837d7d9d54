"""
FanZone - Service Validation and Graceful Degradation

Runtime contract checks for resolved services, plus the two wrapper types
built on them:

- ValidatedProxy: re-validates the target before every method call
- FallbackWrapper: prefers the real service, substitutes named defaults when
  a capability is absent or fails, and answers None otherwise

Callers of a FallbackWrapper never see an exception for a missing or broken
capability, only the defaulted behavior.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.errors import (
    MethodMissingError,
    MethodNotCallableError,
    ServiceInitializationRequiredError,
    ServiceInvalidTypeError,
    ServiceMissingError,
    ServiceNotInitializedError,
    ServiceValidationError,
)
from observability.logging import get_logger

_MISSING = object()

_SCALAR_TYPES = (str, bytes, bytearray, int, float, complex)
_LIFECYCLE_METHODS = ("initialize", "reset", "dispose")


def _is_invalid_type(service: Any) -> bool:
    return (
        isinstance(service, _SCALAR_TYPES)
        or inspect.isclass(service)
        or inspect.isroutine(service)
    )


def _defines(service: Any, attr: str) -> bool:
    """
    True when the object really defines ``attr``.

    Dynamic ``__getattr__`` hooks are not consulted, so lazy proxies and
    wrappers do not fabricate lifecycle markers.
    """
    try:
        inspect.getattr_static(service, attr)
    except AttributeError:
        return False
    return True


def _read_initialized_flag(service: Any) -> Any:
    """Value of ``is_initialized``; a method form is called, nothing else is."""
    if not _defines(service, "is_initialized"):
        return _MISSING
    value = getattr(service, "is_initialized")
    if inspect.ismethod(value):
        value = value()
    return value


def _lifecycle_attr(service: Any, attr: str) -> Any:
    """Bound lifecycle attribute, looked up but never invoked."""
    if not _defines(service, attr):
        return _MISSING
    return getattr(service, attr)


@dataclass
class ServiceHealth:
    """Side-effect-free diagnostic snapshot of one service."""

    name: str
    available: bool = False
    initialized: bool = False
    healthy: bool = False
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "available": self.available,
            "initialized": self.initialized,
            "healthy": self.healthy,
            "issues": list(self.issues),
        }


class ServiceValidator:
    """
    Runtime contract enforcement for services resolved from the container.

    Validation failures are reported to ``error_handler`` when one is given.
    """

    def __init__(self, error_handler: Any = None):
        self.error_handler = error_handler
        self.logger = get_logger("fanzone.validation")

    # -------------------------------------------------------------------------
    # Hard checks
    # -------------------------------------------------------------------------

    def validate_service(self, service: Any, name: str) -> bool:
        """
        Check that ``service`` is present and ready.

        Raises:
            ServiceMissingError: service is None
            ServiceInvalidTypeError: a scalar, class or bare function
            ServiceNotInitializedError: ``is_initialized`` exists and is falsy
            ServiceInitializationRequiredError: ``initialize()`` exists but
                nothing marks the service initialized
        """
        if service is None:
            raise ServiceMissingError(f"{name} service is not available", service_name=name)

        if _is_invalid_type(service):
            raise ServiceInvalidTypeError(
                f"{name} service is invalid (not an object)", service_name=name
            )

        try:
            initialized = _read_initialized_flag(service)
        except Exception as e:
            self.logger.warning("Failed to read initialization flag", service=name, error=str(e))
            initialized = False

        if initialized is not _MISSING and not initialized:
            raise ServiceNotInitializedError(
                f"{name} service is not initialized", service_name=name
            )

        if initialized is _MISSING and callable(_lifecycle_attr(service, "initialize")):
            raise ServiceInitializationRequiredError(
                f"{name} service exists but is not properly initialized", service_name=name
            )

        return True

    def validate_services(self, services: Iterable[Tuple[Any, str]]) -> Dict[str, Any]:
        """Validate ``(service, name)`` pairs without raising."""
        results: Dict[str, Any] = {"valid": True, "errors": [], "warnings": []}

        for service, name in services:
            try:
                self.validate_service(service, name)
            except ServiceValidationError as e:
                results["valid"] = False
                results["errors"].append(
                    {"service": name, "error": e.message, "type": e.validation_type}
                )
                continue

            for issue in self.get_service_health(service, name).issues:
                results["warnings"].append({"service": name, "warning": issue})

        return results

    def validate_method(self, service: Any, method_name: str, service_name: str) -> bool:
        """Validate the service, then that ``method_name`` exists and is callable."""
        self.validate_service(service, service_name)

        method = getattr(service, method_name, _MISSING)
        if method is _MISSING:
            raise MethodMissingError(
                f"{service_name}.{method_name} method does not exist",
                service_name=service_name,
                method_name=method_name,
            )
        if not callable(method):
            raise MethodNotCallableError(
                f"{service_name}.{method_name} is not callable",
                service_name=service_name,
                method_name=method_name,
            )
        return True

    # -------------------------------------------------------------------------
    # Soft probes
    # -------------------------------------------------------------------------

    @staticmethod
    def is_service_available(service: Any) -> bool:
        return service is not None and not _is_invalid_type(service)

    @staticmethod
    def is_method_available(service: Any, method_name: str) -> bool:
        if service is None:
            return False
        try:
            return callable(getattr(service, method_name, None))
        except Exception:
            return False

    def get_service_health(self, service: Any, name: str) -> ServiceHealth:
        health = ServiceHealth(name=name)

        if service is None:
            health.issues.append("Service not available")
            return health

        health.available = True

        try:
            initialized = _read_initialized_flag(service)
        except Exception:
            initialized = False

        if initialized is _MISSING:
            # No flag: assumed initialized
            health.initialized = True
        else:
            health.initialized = bool(initialized)
            if not initialized:
                health.issues.append("Service not initialized")

        for method in _LIFECYCLE_METHODS:
            value = _lifecycle_attr(service, method)
            if value is not _MISSING and not callable(value):
                health.issues.append(f"Invalid {method} method")

        health.healthy = health.available and health.initialized and not health.issues
        return health

    # -------------------------------------------------------------------------
    # Wrappers
    # -------------------------------------------------------------------------

    def report(self, error: ServiceValidationError, context: str) -> None:
        """Log a validation failure and forward it to the error handler."""
        self.logger.error("Service validation failed", context=context, error=error.message)
        if self.error_handler is not None:
            self.error_handler.handle(error, context)

    def create_validated_proxy(self, service: Any, name: str) -> "ValidatedProxy":
        return ValidatedProxy(service, name, self)

    def create_fallback_wrapper(
        self,
        service: Any,
        name: str,
        fallbacks: Optional[Mapping[str, Any]] = None,
        interface: Optional[type] = None,
    ) -> Any:
        """
        Return ``service`` itself when it validates, otherwise a FallbackWrapper.
        """
        if self.is_service_available(service):
            try:
                self.validate_service(service, name)
                return service
            except ServiceValidationError as e:
                self.logger.warning(
                    "Service validation failed, using fallback wrapper",
                    service=name,
                    reason=e.message,
                )

        return FallbackWrapper(service, name, fallbacks, interface)


class ValidatedProxy:
    """
    Transparent wrapper that re-validates the target method on every call.

    Plain attributes pass through; a failed validation is reported and
    re-raised to the caller.
    """

    def __init__(self, service: Any, name: str, validator: ServiceValidator):
        self._service = service
        self._name = name
        self._validator = validator

    @property
    def wrapped_service(self) -> Any:
        return self._service

    def __getattr__(self, item: str) -> Any:
        if item.startswith("__"):
            raise AttributeError(item)

        value = getattr(self._service, item)
        if not callable(value):
            return value

        def call(*args: Any, **kwargs: Any) -> Any:
            try:
                self._validator.validate_method(self._service, item, self._name)
            except ServiceValidationError as e:
                self._validator.report(e, f"{self._name}.{item}")
                raise
            return getattr(self._service, item)(*args, **kwargs)

        call.__name__ = item
        return call

    def __repr__(self) -> str:
        return f"ValidatedProxy({self._name}={self._service!r})"


class FallbackWrapper:
    """
    Degraded stand-in for a service that failed validation.

    Lookup order for each capability: the real service (access failures are
    logged), then the named fallback, then a no-op that logs and returns None.
    A real method that raises, or whose awaitable raises, is answered by the
    fallback of the same name, or None when there is none.
    """

    is_fallback = True

    def __init__(
        self,
        service: Any,
        name: str,
        fallbacks: Optional[Mapping[str, Any]] = None,
        interface: Optional[type] = None,
    ):
        self._service = service
        self._name = name
        self._fallbacks: Dict[str, Any] = dict(fallbacks or {})
        self._interface = interface
        self._logger = get_logger("fanzone.validation.fallback")

    @property
    def wrapped_service(self) -> Any:
        return self._service

    @property
    def service_name(self) -> str:
        return self._name

    def capabilities(self) -> List[str]:
        """Public capability names this wrapper answers for."""
        if self._interface is not None:
            source: Iterable[str] = (
                n for n in dir(self._interface)
                if callable(getattr(self._interface, n, None))
            )
        else:
            real = []
            if self._service is not None:
                real = [n for n in dir(self._service) if self._is_real_callable(n)]
            source = list(real) + list(self._fallbacks)
        return sorted({n for n in source if not n.startswith("_")})

    def _is_real_callable(self, item: str) -> bool:
        try:
            return callable(getattr(self._service, item))
        except Exception:
            return False

    def __dir__(self) -> List[str]:
        return sorted(set(super().__dir__()) | set(self.capabilities()))

    def __getattr__(self, item: str) -> Any:
        if item.startswith("_"):
            raise AttributeError(item)

        if self._service is not None:
            try:
                value = getattr(self._service, item)
            except AttributeError:
                value = _MISSING
            except Exception as e:
                self._logger.warning(
                    "Error accessing capability, using fallback",
                    service=self._name,
                    capability=item,
                    error=str(e),
                )
                value = _MISSING

            if value is not _MISSING:
                if callable(value):
                    return self._guard(item, value)
                return value

        if item in self._fallbacks:
            self._logger.warning("Using fallback", service=self._name, capability=item)
            return self._fallbacks[item]

        self._logger.warning("Capability not available, returning no-op", service=self._name, capability=item)
        return self._noop(item)

    def _guard(self, item: str, method: Callable[..., Any]) -> Callable[..., Any]:
        def call(*args: Any, **kwargs: Any) -> Any:
            try:
                result = method(*args, **kwargs)
            except Exception as e:
                return self._degrade(item, e, args, kwargs)
            if inspect.isawaitable(result):
                return self._guard_awaitable(item, result, args, kwargs)
            return result

        call.__name__ = item
        return call

    async def _guard_awaitable(self, item: str, awaitable: Any, args: tuple, kwargs: dict) -> Any:
        try:
            return await awaitable
        except Exception as e:
            value = self._degrade(item, e, args, kwargs)
            if inspect.isawaitable(value):
                value = await value
            return value

    def _degrade(self, item: str, error: Exception, args: tuple, kwargs: dict) -> Any:
        fallback = self._fallbacks.get(item)
        self._logger.warning(
            "Capability failed, using fallback",
            service=self._name,
            capability=item,
            error=str(error),
            has_fallback=fallback is not None,
        )
        if fallback is None:
            return None
        if callable(fallback):
            return fallback(*args, **kwargs)
        return fallback

    def _noop(self, item: str) -> Callable[..., Any]:
        declared = getattr(self._interface, item, None) if self._interface else None

        if declared is not None and inspect.iscoroutinefunction(declared):
            async def async_noop(*args: Any, **kwargs: Any) -> None:
                self._logger.warning("Capability called but not available", service=self._name, capability=item)
                return None

            return async_noop

        def noop(*args: Any, **kwargs: Any) -> None:
            self._logger.warning("Capability called but not available", service=self._name, capability=item)
            return None

        return noop

    def __repr__(self) -> str:
        return f"FallbackWrapper({self._name}, real={self._service is not None})"
