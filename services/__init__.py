"""FanZone - Business services consuming the runtime."""
from services.auth import AuthService, auth_fallbacks
from services.gifts import GiftService, gift_fallbacks, sample_gifts
from services.users import UserService, user_fallbacks

__all__ = [
    "AuthService",
    "GiftService",
    "UserService",
    "auth_fallbacks",
    "gift_fallbacks",
    "sample_gifts",
    "user_fallbacks",
]
