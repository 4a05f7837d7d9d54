"""
FanZone - User Service

Profiles, points and the leaderboard.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from core.storage import USER_KEY, KeyValueStore, get_json, set_json
from events.bus import EventNames
from observability.logging import get_logger

User = Dict[str, Any]


class UserService:
    def __init__(self, repository: Any, event_bus: Any = None):
        self.repository = repository
        self.event_bus = event_bus
        self.logger = get_logger("fanzone.services.users")

    @property
    def is_initialized(self) -> bool:
        return bool(getattr(self.repository, "is_initialized", False))

    async def get_user_profile(self, user_id: Any) -> Optional[User]:
        return await self.repository.read("users", user_id)

    async def get_leaderboard(self, limit: int = 10) -> List[User]:
        return await self.repository.query(
            "users", {}, {"order_by": "points", "descending": True, "limit": limit}
        )

    async def get_user_rank(self, user_id: Any) -> Optional[int]:
        """1-based position by points; None for an unknown user."""
        user = await self.get_user_profile(user_id)
        if user is None:
            return None
        everyone = await self.repository.query("users")
        points = user.get("points", 0)
        return 1 + sum(1 for other in everyone if other.get("points", 0) > points)

    async def get_user_stats(self, user_id: Any) -> Dict[str, Any]:
        user = await self.get_user_profile(user_id)
        if user is None:
            return {"rank": None, "total_gifts": 0, "points": 0}
        return {
            "rank": await self.get_user_rank(user_id),
            "total_gifts": user.get("total_gifts", 0),
            "points": user.get("points", 0),
        }

    async def update_user_points(self, user_id: Any, points: int) -> User:
        if points < 0:
            raise ValueError("Points cannot be negative")

        user = await self.repository.update("users", user_id, {"points": points})
        self.logger.info("User points updated", user_id=user_id, points=points)
        if self.event_bus is not None:
            self.event_bus.emit(EventNames.USER_POINTS_UPDATED, {"user_id": user_id, "points": points})
        return user


def user_fallbacks(storage: KeyValueStore) -> Dict[str, Callable[..., Any]]:
    """Offline defaults reading and writing the stored user."""

    async def get_user_profile(user_id: Any) -> Optional[User]:
        return get_json(storage, USER_KEY)

    async def get_user_stats(user_id: Any) -> Dict[str, Any]:
        user = get_json(storage, USER_KEY) or {}
        return {
            "rank": None,
            "total_gifts": user.get("total_gifts", 0),
            "points": user.get("points", 0),
        }

    async def get_leaderboard(limit: int = 10) -> List[User]:
        return []

    async def update_user_points(user_id: Any, points: int) -> User:
        user = get_json(storage, USER_KEY, {})
        user["points"] = points
        set_json(storage, USER_KEY, user)
        return user

    return {
        "get_user_profile": get_user_profile,
        "get_user_stats": get_user_stats,
        "get_leaderboard": get_leaderboard,
        "update_user_points": update_user_points,
    }
