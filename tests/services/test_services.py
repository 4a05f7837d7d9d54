"""
Tests for the business services, the repository and the platform adapter.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from adapters.platform import PlatformAdapter, StaticPlatformAdapter
from config import PlatformConfig, RepositoryConfig
from core.errors import AuthenticationError, PlatformError, RepositoryError
from core.storage import AUTH_TOKEN_KEY, USER_KEY, MemoryStore, get_json
from events.bus import EventNames
from repositories.memory import DataRepository, MemoryRepository
from services.auth import AuthService, auth_fallbacks, extract_username
from services.gifts import GiftService, gift_fallbacks, sample_gifts
from services.users import UserService, user_fallbacks

FAST = RepositoryConfig(retry_attempts=1, retry_base_delay=0.0, starting_points=100)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def repository():
    return MemoryRepository(seed={
        "gifts": sample_gifts(),
        "users": [
            {"id": "u1", "telegram_id": 1, "username": "alice", "points": 120, "total_gifts": 0},
            {"id": "u2", "telegram_id": 2, "username": "bob", "points": 40, "total_gifts": 2},
            {"id": "u3", "telegram_id": 3, "username": "carol", "points": 300, "total_gifts": 5},
        ],
    })


@pytest.fixture
def platform():
    return StaticPlatformAdapter(PlatformConfig(user_payload={"id": 77, "first_name": "Dana"}))


@pytest.fixture
def auth(repository, platform, store, event_bus):
    return AuthService(repository, platform, store, event_bus, FAST)


@pytest.fixture
def users(repository, event_bus):
    return UserService(repository, event_bus)


@pytest.fixture
def gifts(repository, users, event_bus):
    return GiftService(repository, users, event_bus)


# =============================================================================
# REPOSITORY
# =============================================================================


class TestMemoryRepository:
    @pytest.mark.asyncio
    async def test_requires_initialization(self, repository):
        assert isinstance(repository, DataRepository)
        with pytest.raises(RepositoryError, match="not initialized"):
            await repository.read("users", "u1")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        repository = MemoryRepository(reachable=False)

        with pytest.raises(RepositoryError, match="Database connection failed"):
            await repository.initialize()
        assert repository.is_initialized is False

    @pytest.mark.asyncio
    async def test_crud(self, repository):
        await repository.initialize()

        created = await repository.create("notes", {"text": "hi"})
        assert created["id"].startswith("notes_")

        created["text"] = "mutated"
        assert (await repository.read("notes", created["id"]))["text"] == "hi"

        updated = await repository.update("notes", created["id"], {"text": "bye"})
        assert updated["text"] == "bye"

        assert await repository.delete("notes", created["id"]) is True
        assert await repository.read("notes", created["id"]) is None

    @pytest.mark.asyncio
    async def test_update_missing(self, repository):
        await repository.initialize()
        with pytest.raises(RepositoryError, match="Record not found"):
            await repository.update("users", "nobody", {"points": 1})

    @pytest.mark.asyncio
    async def test_query_options(self, repository):
        await repository.initialize()

        top = await repository.query("users", {}, {"order_by": "points", "descending": True, "limit": 2})
        assert [u["username"] for u in top] == ["carol", "alice"]

        single = await repository.query("users", {"telegram_id": 2}, {"single": True})
        assert single["username"] == "bob"
        assert await repository.query("users", {"telegram_id": 99}, {"single": True}) is None

    @pytest.mark.asyncio
    async def test_unknown_rpc(self, repository):
        await repository.initialize()
        with pytest.raises(RepositoryError, match="Unknown repository function"):
            await repository.execute("drop_tables")


# =============================================================================
# PLATFORM ADAPTER
# =============================================================================


class TestPlatformAdapter:
    @pytest.mark.asyncio
    async def test_initialize_with_user(self, platform):
        assert isinstance(platform, PlatformAdapter)
        assert await platform.initialize() is True
        assert platform.get_user_data()["first_name"] == "Dana"

    @pytest.mark.asyncio
    async def test_initialize_without_user(self):
        adapter = StaticPlatformAdapter(PlatformConfig(user_payload=None))

        with pytest.raises(PlatformError, match="WebApp user data not available"):
            await adapter.initialize()
        assert adapter.get_user_data() is None
        assert not adapter.is_available()


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestAuthService:
    def test_extract_username(self):
        assert extract_username({"id": 1, "username": "fan"}) == "fan"
        assert extract_username({"id": 1, "first_name": "Ada", "last_name": "L"}) == "Ada L"
        assert extract_username({"id": 5}) == "User5"

    @pytest.mark.asyncio
    async def test_authenticate_creates_user_once(self, auth, repository, store, event_bus):
        await repository.initialize()

        user = await auth.authenticate()
        again = await auth.authenticate()

        assert user["telegram_id"] == 77
        assert user["username"] == "Dana"
        assert user["points"] == 100
        assert again["id"] == user["id"]
        assert auth.is_authenticated()
        assert get_json(store, USER_KEY)["id"] == user["id"]
        assert store.get_item(AUTH_TOKEN_KEY)
        assert len(event_bus.get_history(EventNames.USER_REGISTERED)) == 1
        assert len(event_bus.get_history(EventNames.AUTH_SUCCESS)) == 2

    @pytest.mark.asyncio
    async def test_authenticate_without_user_data(self, repository, store, event_bus):
        await repository.initialize()
        auth = AuthService(repository, StaticPlatformAdapter(PlatformConfig(user_payload=None)), store, event_bus, FAST)

        with pytest.raises(AuthenticationError):
            await auth.authenticate()
        assert len(event_bus.get_history(EventNames.AUTH_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_retries_transient_lookup_failure(self, platform, store):
        repository = MagicMock()
        repository.query = AsyncMock(side_effect=[RepositoryError("timeout"), {"id": "u9", "telegram_id": 77}])
        repository.update = AsyncMock(return_value={})
        config = RepositoryConfig(retry_attempts=2, retry_base_delay=0.0)

        user = await AuthService(repository, platform, store, config=config).authenticate()

        assert user["id"] == "u9"
        assert repository.query.await_count == 2

    def test_load_stored_auth(self, auth, store):
        assert auth.load_stored_auth() is False

        store.set_item(USER_KEY, '{"id": "u1", "telegram_id": 1}')
        store.set_item(AUTH_TOKEN_KEY, "token")

        assert auth.load_stored_auth() is True
        assert auth.get_auth_token() == "token"

    def test_logout(self, auth, store, event_bus):
        auth.start_session({"id": "u1", "telegram_id": 1})
        auth.logout()

        assert not auth.is_authenticated()
        assert store.get_item(USER_KEY) is None
        assert len(event_bus.get_history(EventNames.AUTH_LOGOUT)) == 1

    @pytest.mark.asyncio
    async def test_refresh_user(self, auth, repository):
        await repository.initialize()
        auth.start_session({"id": "u1", "telegram_id": 1, "points": 0})

        refreshed = await auth.refresh_user()

        assert refreshed["points"] == 120
        assert auth.get_current_user()["points"] == 120

    @pytest.mark.asyncio
    async def test_refresh_without_user(self, auth):
        with pytest.raises(AuthenticationError):
            await auth.refresh_user()

    @pytest.mark.asyncio
    async def test_fallback_authenticate_starts_local_session(self, auth, store):
        fallbacks = auth_fallbacks(auth)

        user = await fallbacks["authenticate"]()

        assert user["id"] == "local_77"
        assert user["is_local"] is True
        assert auth.get_current_user() is user
        assert get_json(store, "user_77")["telegram_id"] == 77
        assert fallbacks["is_authenticated"]() is True

        fallbacks["logout"]()
        assert fallbacks["get_current_user"]() is None

    @pytest.mark.asyncio
    async def test_fallback_authenticate_prefers_stored_user(self, auth, store):
        store.set_item(USER_KEY, '{"id": "u1", "telegram_id": 1}')

        user = await auth_fallbacks(auth)["authenticate"]()

        assert user["id"] == "u1"


# =============================================================================
# USERS
# =============================================================================


class TestUserService:
    @pytest.mark.asyncio
    async def test_leaderboard_and_rank(self, users, repository):
        await repository.initialize()

        board = await users.get_leaderboard(limit=3)

        assert [u["username"] for u in board] == ["carol", "alice", "bob"]
        assert await users.get_user_rank("u2") == 3
        assert await users.get_user_rank("ghost") is None

    @pytest.mark.asyncio
    async def test_stats(self, users, repository):
        await repository.initialize()

        assert await users.get_user_stats("u3") == {"rank": 1, "total_gifts": 5, "points": 300}
        assert await users.get_user_stats("ghost") == {"rank": None, "total_gifts": 0, "points": 0}

    @pytest.mark.asyncio
    async def test_update_points(self, users, repository, event_bus):
        await repository.initialize()

        user = await users.update_user_points("u1", 10)

        assert user["points"] == 10
        assert event_bus.get_history(EventNames.USER_POINTS_UPDATED)[0].data == {"user_id": "u1", "points": 10}
        with pytest.raises(ValueError):
            await users.update_user_points("u1", -1)

    def test_initialized_tracks_repository(self, users):
        assert users.is_initialized is False

    @pytest.mark.asyncio
    async def test_fallbacks_use_stored_user(self, store):
        store.set_item(USER_KEY, '{"id": "local_1", "points": 5, "total_gifts": 1}')
        fallbacks = user_fallbacks(store)

        assert (await fallbacks["get_user_profile"]("local_1"))["id"] == "local_1"
        assert await fallbacks["get_user_stats"]("local_1") == {"rank": None, "total_gifts": 1, "points": 5}
        assert await fallbacks["get_leaderboard"]() == []
        assert (await fallbacks["update_user_points"]("local_1", 9))["points"] == 9


# =============================================================================
# GIFTS
# =============================================================================


class TestGiftService:
    @pytest.mark.asyncio
    async def test_available_gifts(self, gifts, repository, event_bus):
        await repository.initialize()

        available = await gifts.get_available_gifts()

        assert [g["id"] for g in available] == ["gift-1", "gift-2"]
        assert event_bus.get_history(EventNames.GIFTS_LOADED)[0].data == {"count": 2}

    @pytest.mark.asyncio
    async def test_purchase(self, gifts, repository, event_bus):
        await repository.initialize()

        result = await gifts.purchase_gift("u1", "gift-2")

        assert result["success"] is True
        assert result["remaining_points"] == 70
        owned = await gifts.get_user_gifts("u1")
        assert [g["gift_id"] for g in owned] == ["gift-2"]
        assert event_bus.get_history(EventNames.GIFT_PURCHASED)[0].data["points_spent"] == 50

    @pytest.mark.asyncio
    async def test_purchase_rejections(self, gifts, repository, event_bus):
        await repository.initialize()

        assert (await gifts.purchase_gift("u2", "gift-2"))["message"] == "Insufficient points"
        assert (await gifts.purchase_gift("u1", "gift-x"))["message"] == "Gift not found"
        assert (await gifts.purchase_gift("ghost", "gift-1"))["message"] == "User not found"
        assert len(event_bus.get_history(EventNames.GIFT_PURCHASE_FAILED)) == 3

    @pytest.mark.asyncio
    async def test_sold_out(self):
        catalog = [dict(sample_gifts()[0], max_supply=1)]
        repository = MemoryRepository(seed={"gifts": catalog, "users": [
            {"id": "u1", "telegram_id": 1, "points": 100},
        ]})
        await repository.initialize()
        gifts = GiftService(repository, UserService(repository))

        assert (await gifts.purchase_gift("u1", "gift-1"))["success"] is True
        assert (await gifts.purchase_gift("u1", "gift-1"))["message"] == "Gift is sold out"
        assert await gifts.get_available_gifts() == []

    @pytest.mark.asyncio
    async def test_fallbacks(self, store):
        fallbacks = gift_fallbacks(store)

        assert await fallbacks["get_available_gifts"]() == sample_gifts()
        assert (await fallbacks["purchase_gift"]("u1", "gift-1"))["success"] is True
        assert [g["gift_id"] for g in await fallbacks["get_user_gifts"]("u1")] == ["gift-1"]
        assert fallbacks["get_sample_gifts"]() == sample_gifts()
