"""
FanZone - Configuration

Centralized configuration management for the service runtime.
Uses environment variables with sensible defaults.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
import json

from dotenv import load_dotenv

from observability.logging import LoggingConfig

# Load environment variables from .env file
load_dotenv()


class Environment(Enum):
    """Deployment environments."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class StorageBackend(Enum):
    """Key-value store backends for flags and credentials."""
    MEMORY = "memory"
    FILE = "file"


@dataclass
class StorageConfig:
    """Local key-value storage configuration."""
    backend: StorageBackend = field(
        default_factory=lambda: StorageBackend(os.getenv("STORAGE_BACKEND", "memory"))
    )
    path: Path = field(default_factory=lambda: Path(os.getenv("STORAGE_PATH", "./data/storage.json")))


@dataclass
class EventBusConfig:
    """Event bus and subscription timing configuration."""
    max_history_size: int = field(default_factory=lambda: int(os.getenv("EVENT_HISTORY_SIZE", "100")))
    replay_window_seconds: float = field(default_factory=lambda: float(os.getenv("EVENT_REPLAY_WINDOW", "60")))
    ready_poll_interval: float = field(default_factory=lambda: float(os.getenv("EVENT_BUS_POLL_INTERVAL", "0.1")))
    ready_timeout: float = field(default_factory=lambda: float(os.getenv("EVENT_BUS_READY_TIMEOUT", "5.0")))


@dataclass
class ErrorHandlerConfig:
    """Error classification and recovery configuration."""
    max_log_size: int = field(default_factory=lambda: int(os.getenv("ERROR_LOG_SIZE", "100")))
    retry_delay: float = field(default_factory=lambda: float(os.getenv("ERROR_RETRY_DELAY", "3.0")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")


@dataclass
class PlatformConfig:
    """
    Platform adapter configuration.

    The user payload is the JSON object the hosting platform hands to the
    application at launch (id, username, first_name, ...).
    """
    name: str = field(default_factory=lambda: os.getenv("PLATFORM_NAME", "telegram"))
    user_payload: Optional[Dict[str, Any]] = field(
        default_factory=lambda: _load_json_env("PLATFORM_USER")
    )


@dataclass
class RepositoryConfig:
    """Data repository configuration."""
    retry_attempts: int = field(default_factory=lambda: int(os.getenv("REPOSITORY_RETRY_ATTEMPTS", "3")))
    retry_base_delay: float = field(default_factory=lambda: float(os.getenv("REPOSITORY_RETRY_DELAY", "0.5")))
    starting_points: int = field(default_factory=lambda: int(os.getenv("STARTING_POINTS", "100")))


@dataclass
class Config:
    """Main configuration class combining all sub-configs."""
    env: Environment = field(default_factory=lambda: Environment(os.getenv("ENVIRONMENT", "development")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    event_bus: EventBusConfig = field(default_factory=EventBusConfig)
    errors: ErrorHandlerConfig = field(default_factory=ErrorHandlerConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.env == Environment.DEVELOPMENT

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (excluding user payloads)."""
        return {
            "env": self.env.value,
            "debug": self.debug,
            "logging": {
                "level": self.logging.level,
                "json_format": self.logging.json_format,
            },
            "storage": {
                "backend": self.storage.backend.value,
                "path": str(self.storage.path),
            },
            "event_bus": {
                "max_history_size": self.event_bus.max_history_size,
                "replay_window_seconds": self.event_bus.replay_window_seconds,
                "ready_timeout": self.event_bus.ready_timeout,
            },
            "errors": {
                "max_log_size": self.errors.max_log_size,
                "retry_delay": self.errors.retry_delay,
            },
            "platform": {
                "name": self.platform.name,
                "has_user": self.platform.user_payload is not None,
            },
        }


def _load_json_env(name: str) -> Optional[Dict[str, Any]]:
    raw = os.getenv(name)
    if not raw:
        return None
    return json.loads(raw)


# Singleton configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create configuration singleton."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the configuration singleton so the next call re-reads the environment."""
    global _config
    _config = None
