"""
FanZone - Dependency Injection Container

Name-keyed registry, lazy resolver and staged bootstrap orchestrator.

Features:
- Values, singletons and factories resolved through one three-tier lookup
- Aliases for alternate lookup names
- Positional dependency injection in declared order
- Explicit cycle detection
- Scoped containers with independent singletons
- Multi-phase async bootstrap with degraded-mode handling
"""

from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from adapters.platform import StaticPlatformAdapter
from config import Config, get_config
from core.error_handler import ErrorHandler, ErrorInfo
from core.errors import (
    AuthenticationBootstrapError,
    AuthenticationError,
    BootstrapError,
    CyclicDependencyError,
    InvalidFactoryError,
    ServiceNotRegisteredError,
)
from core.storage import create_store
from core.validation import ServiceValidator
from events.bus import EventBus, EventNames
from observability.logging import LogContext, get_logger
from repositories.memory import MemoryRepository
from services.auth import AuthService, auth_fallbacks
from services.gifts import GiftService, gift_fallbacks, sample_gifts
from services.users import UserService, user_fallbacks

logger = get_logger("fanzone.di")


@dataclass
class ServiceRegistration:
    """How a named service is produced."""

    name: str
    factory: Callable[..., Any]
    singleton: bool = True
    dependencies: List[str] = field(default_factory=list)
    eager: bool = False
    aliases: List[str] = field(default_factory=list)


class DIContainer:
    """
    Dependency Injection Container.

    Usage:
        container = DIContainer()
        container.register_value("logger", get_logger("fanzone"))
        container.register(
            "user_service",
            lambda repository, bus: UserService(repository, bus),
            dependencies=["repository", "event_bus"],
            aliases=["users"],
        )
        users = container.get("users")

        # Full application bootstrap
        await container.initialize_app()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        notifier: Optional[Callable[..., Any]] = None,
        reload: Optional[Callable[[], Any]] = None,
    ):
        self.config = config
        self.notifier = notifier
        self.reload = reload

        self._values: Dict[str, Any] = {}
        self._singletons: Dict[str, Any] = {}
        self._factories: Dict[str, ServiceRegistration] = {}
        self._aliases: Dict[str, str] = {}
        self._resolving: List[str] = []
        self._lock = threading.RLock()

        self.initialized = False
        self.degraded_services: Dict[str, ErrorInfo] = {}

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        name: str,
        factory: Callable[..., Any],
        *,
        singleton: bool = True,
        dependencies: Optional[List[str]] = None,
        eager: bool = False,
        aliases: Optional[List[str]] = None,
    ) -> "DIContainer":
        """
        Register ``factory`` under ``name``.

        The factory receives the resolved ``dependencies`` positionally, in
        the order listed. ``eager`` resolves a singleton immediately.

        Raises:
            InvalidFactoryError: ``factory`` is not callable
        """
        if not callable(factory):
            raise InvalidFactoryError(name, factory)

        registration = ServiceRegistration(
            name=name,
            factory=factory,
            singleton=singleton,
            dependencies=list(dependencies or []),
            eager=eager,
            aliases=list(aliases or []),
        )

        with self._lock:
            self._factories[name] = registration
            for alias in registration.aliases:
                self._aliases[alias] = name

        if singleton and eager:
            self.get(name)

        return self

    def register_value(self, name: str, value: Any) -> "DIContainer":
        with self._lock:
            self._values[name] = value
        return self

    def register_singleton(self, name: str, instance: Any) -> "DIContainer":
        with self._lock:
            self._singletons[name] = instance
        return self

    def add_alias(self, alias: str, name: str) -> "DIContainer":
        with self._lock:
            self._aliases[alias] = name
        return self

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def _actual_name(self, name: str) -> str:
        return self._aliases.get(name, name)

    def get(self, name: str) -> Any:
        """
        Resolve ``name``: values, then singletons, then the factory.

        Raises:
            ServiceNotRegisteredError: nothing is registered under the name
            CyclicDependencyError: the factory chain leads back to itself
        """
        with self._lock:
            return self._resolve(name)

    def _resolve(self, name: str) -> Any:
        actual = self._actual_name(name)

        if actual in self._values:
            return self._values[actual]
        if actual in self._singletons:
            return self._singletons[actual]

        registration = self._factories.get(actual)
        if registration is None:
            raise ServiceNotRegisteredError(name)

        if actual in self._resolving:
            start = self._resolving.index(actual)
            raise CyclicDependencyError(self._resolving[start:] + [actual])

        self._resolving.append(actual)
        try:
            dependencies = [self._resolve(dep) for dep in registration.dependencies]
            instance = registration.factory(*dependencies)
        finally:
            self._resolving.pop()

        if registration.singleton:
            self._singletons[actual] = instance
        return instance

    def has(self, name: str) -> bool:
        actual = self._actual_name(name)
        return actual in self._values or actual in self._singletons or actual in self._factories

    def get_registration(self, name: str) -> Optional[ServiceRegistration]:
        return self._factories.get(self._actual_name(name))

    def registered_names(self) -> List[str]:
        return sorted(set(self._values) | set(self._singletons) | set(self._factories))

    # -------------------------------------------------------------------------
    # Scopes and lifecycle
    # -------------------------------------------------------------------------

    def create_scope(self) -> "DIContainer":
        """
        New container sharing this one's factories, aliases and values.

        Singletons are not copied: each scope materializes its own.
        """
        scope = DIContainer(self.config, notifier=self.notifier, reload=self.reload)
        with self._lock:
            scope._factories = dict(self._factories)
            scope._aliases = dict(self._aliases)
            scope._values = dict(self._values)
        return scope

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._singletons.clear()
            self._factories.clear()
            self._aliases.clear()
            self.degraded_services.clear()
            self.initialized = False

    def get_stats(self) -> Dict[str, Any]:
        return {
            "values": len(self._values),
            "singletons": len(self._singletons),
            "factories": len(self._factories),
            "aliases": len(self._aliases),
            "initialized": self.initialized,
            "degraded": sorted(self.degraded_services),
        }

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    async def initialize_app(self) -> "DIContainer":
        """
        Register and start every application service.

        Platform adapter and repository failures are classified and leave
        the application in degraded mode. Authentication failure is fatal.

        Raises:
            BootstrapError: a phase failed; ``step`` names it
            AuthenticationBootstrapError: no user could be authenticated
        """
        if self.initialized:
            logger.warning("DI container already initialized")
            return self

        step = "starting"
        with LogContext(phase="bootstrap"):
            try:
                logger.info("Initializing DI container")

                step = "core_services"
                self._register_core_services()

                step = "adapters"
                self._register_adapters()

                step = "repositories"
                self._register_repositories()

                step = "business_services"
                self._register_business_services()

                step = "critical_services_init"
                await self._initialize_critical_services()

            except Exception as e:
                if isinstance(e, BootstrapError):
                    error = e
                else:
                    error = BootstrapError(
                        f"DI container initialization failed at step: {step}. {e}",
                        step=step,
                        original_error=e,
                    )

                logger.error("Failed to initialize DI container", step=error.step, error=str(e))
                if self.has("error_handler"):
                    self.get("error_handler").handle(error, f"DIContainer.{error.step}")

                if error is e:
                    raise
                raise error from e

        self.initialized = True
        logger.info(
            "DI container initialized",
            services=len(self.registered_names()),
            degraded=sorted(self.degraded_services),
        )
        self.get("event_bus").emit(
            EventNames.APP_INITIALIZED,
            {"degraded": sorted(self.degraded_services)},
        )
        return self

    def _provide(self, name: str, build: Callable[[], Any], aliases: tuple = ()) -> None:
        # Pre-registered names win: hosts and tests supply their own
        if not self.has(name):
            self.register_value(name, build())
        for alias in aliases:
            if not self.has(alias):
                self.add_alias(alias, name)

    def _provide_factory(self, name: str, factory: Callable[..., Any], **options: Any) -> None:
        if not self.has(name):
            self.register(name, factory, **options)
            return
        for alias in options.get("aliases") or []:
            if not self.has(alias):
                self.add_alias(alias, name)

    def _register_core_services(self) -> None:
        self._provide("config", lambda: self.config or get_config())
        config = self.get("config")

        self._provide("logger", lambda: get_logger("fanzone"))
        self._provide("event_bus", lambda: EventBus(config.event_bus), aliases=("eventBus",))
        self._provide("storage", lambda: create_store(config.storage))
        self._provide(
            "error_handler",
            lambda: ErrorHandler(
                config.errors,
                event_bus=self.get("event_bus"),
                storage=self.get("storage"),
                notifier=self.notifier,
                reload=self.reload,
            ),
        )
        self._provide(
            "service_validator",
            lambda: ServiceValidator(error_handler=self.get("error_handler")),
            aliases=("validator",),
        )
        logger.debug("Core services registered")

    def _register_adapters(self) -> None:
        self._provide_factory(
            "platform_adapter",
            lambda config: StaticPlatformAdapter(config.platform),
            dependencies=["config"],
            aliases=["platform", "telegram"],
        )
        logger.debug("Adapters registered")

    def _register_repositories(self) -> None:
        self._provide_factory(
            "repository",
            lambda: MemoryRepository(seed={"gifts": sample_gifts()}),
            aliases=["data_repository", "dataRepository"],
        )
        logger.debug("Repositories registered")

    def _register_business_services(self) -> None:
        self._provide_factory(
            "auth_service",
            self._build_auth_service,
            dependencies=[
                "repository", "platform_adapter", "storage", "event_bus",
                "logger", "service_validator", "config",
            ],
            aliases=["auth"],
        )
        self._provide_factory(
            "user_service",
            self._build_user_service,
            dependencies=["repository", "storage", "event_bus", "logger", "service_validator"],
            aliases=["users"],
        )
        self._provide_factory(
            "gift_service",
            self._build_gift_service,
            dependencies=[
                "repository", "user_service", "storage", "event_bus",
                "logger", "service_validator",
            ],
            aliases=["gifts"],
        )
        logger.debug("Business services registered")

    @staticmethod
    def _degrade_if_unhealthy(
        validator: ServiceValidator,
        service: Any,
        name: str,
        repository: Any,
        fallbacks: Dict[str, Any],
    ) -> Any:
        if validator.get_service_health(repository, "repository").healthy:
            return service
        logger.warning("Service running with fallback", service=name)
        return validator.create_fallback_wrapper(service, name, fallbacks, interface=type(service))

    def _build_auth_service(self, repository, platform_adapter, storage, event_bus, log, validator, config):
        validator.validate_service(log, "Logger")
        service = AuthService(repository, platform_adapter, storage, event_bus, config.repository)
        return self._degrade_if_unhealthy(
            validator, service, "AuthService", repository, auth_fallbacks(service)
        )

    def _build_user_service(self, repository, storage, event_bus, log, validator):
        validator.validate_service(log, "Logger")
        service = UserService(repository, event_bus)
        return self._degrade_if_unhealthy(
            validator, service, "UserService", repository, user_fallbacks(storage)
        )

    def _build_gift_service(self, repository, user_service, storage, event_bus, log, validator):
        validator.validate_service(log, "Logger")
        validator.validate_method(user_service, "get_user_profile", "UserService")
        service = GiftService(repository, user_service, event_bus)
        return self._degrade_if_unhealthy(
            validator, service, "GiftService", repository, gift_fallbacks(storage)
        )

    async def _initialize_critical_services(self) -> None:
        bus = self.get("event_bus")
        if callable(getattr(bus, "initialize", None)) and not getattr(bus, "is_initialized", True):
            await bus.initialize()

        # Non-fatal tier: the application continues in degraded mode
        await self._initialize_non_fatal("platform_adapter", "platform_adapter.init")
        await self._initialize_non_fatal("repository", "repository.init")

        logger.info("Initializing authentication")
        try:
            auth = self.get("auth_service")
            restored = auth.load_stored_auth()
            if not restored:
                user = auth.authenticate()
                if inspect.isawaitable(user):
                    user = await user
                if not user:
                    raise AuthenticationError("Failed to authenticate user")
        except Exception as e:
            logger.error("Authentication failed", error=str(e))
            raise AuthenticationBootstrapError(
                f"Failed to authenticate user: {e}",
                step="critical_services_init",
                original_error=e,
            ) from e

    async def _initialize_non_fatal(self, name: str, context: str) -> None:
        logger.info("Initializing service", service=name)
        try:
            service = self.get(name)
        except Exception as e:
            # Unconstructible: dependents see None and degrade
            self._record_degraded(name, context, e)
            self.register_value(name, None)
            return

        try:
            result = service.initialize()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._record_degraded(name, context, e)
            return

        logger.info("Service initialized", service=name)

    def _record_degraded(self, name: str, context: str, error: Exception) -> None:
        logger.warning("Service initialization failed, continuing degraded", service=name, error=str(error))
        info = self.get("error_handler").handle(error, context)
        self.degraded_services[name] = info
