"""
FanZone - Platform Adapter

Capability contract for the hosting platform (the Telegram WebApp in
production) and a static implementation seeded from configuration.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from config import PlatformConfig
from core.errors import PlatformError
from observability.logging import get_logger

logger = get_logger("fanzone.adapters.platform")


@runtime_checkable
class PlatformAdapter(Protocol):
    """What the runtime needs from the hosting platform."""

    async def initialize(self) -> bool: ...

    def get_user_data(self) -> Optional[Dict[str, Any]]: ...

    def is_available(self) -> bool: ...


class StaticPlatformAdapter:
    """
    Platform adapter backed by a fixed user payload.

    Used for local runs and tests; the payload comes from PlatformConfig
    (``PLATFORM_USER`` JSON) unless given explicitly.
    """

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        user_payload: Optional[Dict[str, Any]] = None,
    ):
        self.config = config or PlatformConfig()
        self.user_payload = user_payload if user_payload is not None else self.config.user_payload
        self.is_initialized = False

    async def initialize(self) -> bool:
        if self.is_initialized:
            return True

        if not self.user_payload:
            raise PlatformError(
                f"{self.config.name} WebApp user data not available",
                suggestions=["Open the application from inside the Telegram client"],
            )

        self.is_initialized = True
        logger.info("Platform adapter initialized", platform=self.config.name)
        return True

    def is_available(self) -> bool:
        return bool(self.user_payload)

    def get_user_data(self) -> Optional[Dict[str, Any]]:
        """Normalized copy of the platform user, or None when there is none."""
        if not self.user_payload:
            return None

        payload = self.user_payload
        return {
            "id": payload.get("id"),
            "username": payload.get("username"),
            "first_name": payload.get("first_name") or payload.get("firstName"),
            "last_name": payload.get("last_name") or payload.get("lastName"),
            "language_code": payload.get("language_code", "en"),
        }
