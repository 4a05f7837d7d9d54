"""
FanZone - Gift Service

Gift catalog, ownership and purchases. Purchases run through the
repository's ``purchase_gift`` function, which debits points and supply
atomically.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from core.storage import USER_GIFTS_KEY, KeyValueStore, get_json, set_json
from events.bus import EventNames
from observability.logging import get_logger

Gift = Dict[str, Any]

SAMPLE_GIFTS: List[Gift] = [
    {
        "id": "gift-1",
        "name": "Welcome Gift",
        "description": "A special welcome gift",
        "category": "special",
        "price_points": 10,
        "current_supply": 0,
        "max_supply": 100,
        "is_active": True,
        "sort_order": 1,
    },
    {
        "id": "gift-2",
        "name": "Trophy Gift",
        "description": "A trophy for champions",
        "category": "trophy",
        "price_points": 50,
        "current_supply": 0,
        "max_supply": 50,
        "is_active": True,
        "sort_order": 2,
    },
]


def sample_gifts() -> List[Gift]:
    return copy.deepcopy(SAMPLE_GIFTS)


class GiftService:
    def __init__(self, repository: Any, user_service: Any, event_bus: Any = None):
        self.repository = repository
        self.user_service = user_service
        self.event_bus = event_bus
        self.logger = get_logger("fanzone.services.gifts")

    @property
    def is_initialized(self) -> bool:
        return bool(getattr(self.repository, "is_initialized", False))

    def _emit(self, event: str, data: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, data)

    async def get_available_gifts(self) -> List[Gift]:
        gifts = await self.repository.query(
            "gifts", {"is_active": True}, {"order_by": "sort_order"}
        )
        available = [
            g for g in gifts
            if g.get("max_supply") is None or g.get("current_supply", 0) < g["max_supply"]
        ]
        self.logger.debug("Loaded gifts", count=len(available))
        self._emit(EventNames.GIFTS_LOADED, {"count": len(available)})
        return available

    async def get_user_gifts(self, user_id: Any) -> List[Dict[str, Any]]:
        return await self.repository.query(
            "user_gifts", {"user_id": user_id}, {"order_by": "obtained_at", "descending": True}
        )

    async def purchase_gift(self, user_id: Any, gift_id: str) -> Dict[str, Any]:
        """
        Buy ``gift_id`` for ``user_id``.

        Business failures (sold out, insufficient points) come back as
        ``{"success": False, "message": ...}``; repository failures raise.
        """
        user = await self.user_service.get_user_profile(user_id)
        if user is None:
            result = {"success": False, "message": "User not found"}
        else:
            self.logger.info("Processing gift purchase", user_id=user_id, gift_id=gift_id)
            result = await self.repository.execute(
                "purchase_gift",
                {"p_user_telegram_id": user.get("telegram_id"), "p_gift_id": gift_id},
            )

        if result.get("success"):
            self._emit(EventNames.GIFT_PURCHASED, {
                "user_id": user_id,
                "gift_id": gift_id,
                "gift_name": result.get("gift_name"),
                "points_spent": result.get("price_paid"),
            })
        else:
            self.logger.warning("Gift purchase rejected", user_id=user_id, gift_id=gift_id, reason=result.get("message"))
            self._emit(EventNames.GIFT_PURCHASE_FAILED, {
                "user_id": user_id,
                "gift_id": gift_id,
                "message": result.get("message"),
            })
        return result

    def get_sample_gifts(self) -> List[Gift]:
        return sample_gifts()


def gift_fallbacks(storage: KeyValueStore) -> Dict[str, Callable[..., Any]]:
    """Offline defaults: sample catalog and purchases recorded in local storage."""

    async def get_available_gifts() -> List[Gift]:
        return sample_gifts()

    async def get_user_gifts(user_id: Any) -> List[Dict[str, Any]]:
        return get_json(storage, USER_GIFTS_KEY, [])

    async def purchase_gift(user_id: Any, gift_id: str) -> Dict[str, Any]:
        owned = get_json(storage, USER_GIFTS_KEY, [])
        owned.append({"gift_id": gift_id, "obtained_at": datetime.now(timezone.utc).isoformat()})
        set_json(storage, USER_GIFTS_KEY, owned)
        return {"success": True, "message": "Gift purchased (offline mode)"}

    return {
        "get_available_gifts": get_available_gifts,
        "get_user_gifts": get_user_gifts,
        "purchase_gift": purchase_gift,
        "get_sample_gifts": sample_gifts,
    }
