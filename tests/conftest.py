"""
FanZone - Test Configuration

Pytest fixtures and configuration for all tests.
"""
from unittest.mock import MagicMock

import pytest

from config import (
    Config,
    ErrorHandlerConfig,
    EventBusConfig,
    PlatformConfig,
    RepositoryConfig,
    StorageBackend,
    StorageConfig,
)
from core.error_handler import ErrorHandler
from core.storage import MemoryStore
from core.validation import ServiceValidator
from di.container import DIContainer
from events.bus import EventBus
from observability.logging import get_logger

PLATFORM_USER = {"id": 4242, "username": "fan42", "first_name": "Ada"}


@pytest.fixture
def bus_config() -> EventBusConfig:
    """Fast polling so readiness tests finish quickly."""
    return EventBusConfig(
        max_history_size=100,
        replay_window_seconds=60.0,
        ready_poll_interval=0.01,
        ready_timeout=0.2,
    )


@pytest.fixture
def test_config(bus_config) -> Config:
    """Configuration with a platform user and no retry back-off."""
    return Config(
        storage=StorageConfig(backend=StorageBackend.MEMORY),
        event_bus=bus_config,
        errors=ErrorHandlerConfig(max_log_size=100, retry_delay=0.01, debug=True),
        platform=PlatformConfig(name="telegram", user_payload=dict(PLATFORM_USER)),
        repository=RepositoryConfig(retry_attempts=1, retry_base_delay=0.0, starting_points=100),
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def logger():
    return get_logger("fanzone.tests")


@pytest.fixture
def event_bus(bus_config) -> EventBus:
    return EventBus(bus_config)


@pytest.fixture
def reload_hook() -> MagicMock:
    return MagicMock(name="reload")


@pytest.fixture
def error_handler(event_bus, store, reload_hook) -> ErrorHandler:
    return ErrorHandler(
        ErrorHandlerConfig(max_log_size=100, retry_delay=0.01, debug=False),
        event_bus=event_bus,
        storage=store,
        reload=reload_hook,
    )


@pytest.fixture
def validator(error_handler) -> ServiceValidator:
    return ServiceValidator(error_handler=error_handler)


@pytest.fixture
def container(test_config, reload_hook) -> DIContainer:
    return DIContainer(test_config, reload=reload_hook)
