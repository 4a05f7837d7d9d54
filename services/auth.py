"""
FanZone - Authentication Service

Authenticates the platform user against the data repository, keeps the
session in the key-value store, and announces auth transitions on the
event bus.
"""

from __future__ import annotations

import base64
import json
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from config import RepositoryConfig
from core.errors import AuthenticationError
from core.resilience import RetryConfig, RetryPolicy
from core.storage import AUTH_TOKEN_KEY, USER_KEY, KeyValueStore, get_json, set_json
from events.bus import EventNames
from observability.logging import get_logger

User = Dict[str, Any]


def extract_username(user_data: Dict[str, Any]) -> str:
    if user_data.get("username"):
        return user_data["username"]

    first = user_data.get("first_name") or ""
    last = user_data.get("last_name") or ""
    name = f"{first} {last}".strip()
    return name or f"User{user_data.get('id')}"


def generate_token(user: User) -> str:
    payload = {
        "user_id": user.get("telegram_id"),
        "timestamp": int(time.time() * 1000),
        "session": secrets.token_hex(5),
    }
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuthService:
    """Platform-user authentication with a repository-backed user record."""

    def __init__(
        self,
        repository: Any,
        platform_adapter: Any,
        storage: KeyValueStore,
        event_bus: Any = None,
        config: Optional[RepositoryConfig] = None,
    ):
        self.repository = repository
        self.platform = platform_adapter
        self.storage = storage
        self.event_bus = event_bus
        self.config = config or RepositoryConfig()
        self.logger = get_logger("fanzone.services.auth")

        self.current_user: Optional[User] = None
        self.auth_token: Optional[str] = None
        self._authenticated = False

        self._retry = RetryPolicy(
            RetryConfig(
                max_attempts=self.config.retry_attempts,
                base_delay=self.config.retry_base_delay,
            ),
            name="get_or_create_user",
        )

    @property
    def is_initialized(self) -> bool:
        # Tracks the backing store: a service over a dead repository is degraded
        return bool(getattr(self.repository, "is_initialized", False))

    def _emit(self, event: str, data: Any = None) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, data)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def authenticate(self, user_data: Optional[Dict[str, Any]] = None) -> User:
        """
        Authenticate the platform user, creating their record on first visit.

        Raises:
            AuthenticationError: the platform supplied no usable user
        """
        try:
            if user_data is None and self.platform is not None:
                user_data = self.platform.get_user_data()

            if not user_data or not user_data.get("id"):
                raise AuthenticationError("No user data available for authentication")

            self.logger.info("Authenticating user", user_id=user_data["id"])

            user = await self._retry.run(self.get_or_create_user, user_data)
            await self.update_last_login(user["id"])

            self.start_session(user)
            self._emit(EventNames.AUTH_SUCCESS, {"user": user})
            self.logger.info(
                "User authenticated",
                user_id=user.get("telegram_id"),
                username=user.get("username"),
            )
            return user

        except Exception as e:
            self.logger.error("Authentication failed", error=str(e))
            self._emit(EventNames.AUTH_FAILED, {"error": str(e)})
            raise

    async def get_or_create_user(self, user_data: Dict[str, Any]) -> User:
        existing = await self.repository.query(
            "users", {"telegram_id": user_data["id"]}, {"single": True}
        )
        if existing:
            self.logger.debug("Found existing user", user_id=existing.get("telegram_id"))
            return existing

        self.logger.info("Creating new user", telegram_id=user_data["id"])
        user = await self.repository.create("users", {
            "telegram_id": user_data["id"],
            "username": extract_username(user_data),
            "first_name": user_data.get("first_name"),
            "last_name": user_data.get("last_name"),
            "points": self.config.starting_points,
            "total_gifts": 0,
            "last_login": _now(),
        })
        self._emit(EventNames.USER_REGISTERED, {"user": user})
        return user

    def create_local_user(self, user_data: Dict[str, Any]) -> User:
        """User record kept only in local storage, for offline operation."""
        user = {
            "id": f"local_{user_data['id']}",
            "telegram_id": user_data["id"],
            "username": extract_username(user_data),
            "first_name": user_data.get("first_name"),
            "last_name": user_data.get("last_name"),
            "points": self.config.starting_points,
            "total_gifts": 0,
            "created_at": _now(),
            "last_login": _now(),
            "is_local": True,
        }
        set_json(self.storage, f"user_{user_data['id']}", user)
        self.logger.warning("Created local user", user_id=user["telegram_id"])
        return user

    async def update_last_login(self, user_id: Any) -> None:
        try:
            await self.repository.update("users", user_id, {"last_login": _now()})
        except Exception as e:
            self.logger.warning("Failed to update last login", user_id=user_id, error=str(e))

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def start_session(self, user: User, token: Optional[str] = None) -> None:
        self.current_user = user
        self.auth_token = token or generate_token(user)
        self._authenticated = True
        self.store_auth_data()

    def store_auth_data(self) -> None:
        if self.current_user is None:
            return
        set_json(self.storage, USER_KEY, self.current_user)
        self.storage.set_item(AUTH_TOKEN_KEY, self.auth_token or "")

    def load_stored_auth(self) -> bool:
        """Restore a previous session from storage; True if one was found."""
        try:
            user = get_json(self.storage, USER_KEY)
            token = self.storage.get_item(AUTH_TOKEN_KEY)
        except (ValueError, TypeError) as e:
            self.logger.error("Failed to load stored auth", error=str(e))
            return False

        if not user or not token:
            return False

        self.current_user = user
        self.auth_token = token
        self._authenticated = True
        self.logger.info("Restored stored session", user_id=user.get("telegram_id"))
        return True

    def is_authenticated(self) -> bool:
        return self._authenticated and self.current_user is not None

    def get_current_user(self) -> Optional[User]:
        return self.current_user

    def get_auth_token(self) -> Optional[str]:
        return self.auth_token

    def logout(self) -> None:
        self.current_user = None
        self.auth_token = None
        self._authenticated = False

        self.storage.remove_item(USER_KEY)
        self.storage.remove_item(AUTH_TOKEN_KEY)

        self._emit(EventNames.AUTH_LOGOUT)
        self.logger.info("User logged out")

    async def refresh_user(self) -> Optional[User]:
        if self.current_user is None:
            raise AuthenticationError("No user to refresh")

        refreshed = await self.repository.read("users", self.current_user["id"])
        if refreshed:
            self.current_user = refreshed
            self.store_auth_data()
            self._emit(EventNames.USER_UPDATED, {"user": refreshed})
        return refreshed


def auth_fallbacks(service: AuthService) -> Dict[str, Callable[..., Any]]:
    """
    Offline defaults used when the repository is unavailable.

    Authentication resumes the stored user or starts a local one built from
    the platform payload; either way the session lands on ``service``.
    """
    storage = service.storage

    async def authenticate(user_data: Optional[Dict[str, Any]] = None) -> Optional[User]:
        user = get_json(storage, USER_KEY)
        if not user:
            if user_data is None and service.platform is not None:
                user_data = service.platform.get_user_data()
            if not user_data or not user_data.get("id"):
                return None
            user = service.create_local_user(user_data)

        service.start_session(user)
        return user

    def get_current_user() -> Optional[User]:
        return get_json(storage, USER_KEY)

    def is_authenticated() -> bool:
        return storage.get_item(USER_KEY) is not None

    def logout() -> None:
        storage.remove_item(USER_KEY)
        storage.remove_item(AUTH_TOKEN_KEY)

    return {
        "authenticate": authenticate,
        "get_current_user": get_current_user,
        "is_authenticated": is_authenticated,
        "logout": logout,
    }
