"""
Tests for core.error_handler.

Covers:
- Textual and typed classification
- Bounded error log and JSON export
- Recovery routines and their persisted flags
- Notifier and category callbacks
"""
import asyncio
import json
import threading
from unittest.mock import MagicMock

import pytest

from config import ErrorHandlerConfig
from core.error_handler import (
    GENERIC_USER_MESSAGE,
    ErrorHandler,
    ErrorInfo,
    ErrorLogEntry,
    RecoveryAction,
)
from core.errors import (
    BootstrapError,
    ErrorCategory,
    PlatformError,
    RepositoryError,
    ServiceMissingError,
)
from core.storage import AUTH_TOKEN_KEY, OFFLINE_MODE_KEY, USER_KEY


class Unprintable:
    def __str__(self):
        raise RuntimeError("cannot render")


# =============================================================================
# CLASSIFICATION
# =============================================================================


class TestClassification:
    """Rule order, typed categories and the generic fallback."""

    def test_database_timeout_goes_offline(self, error_handler):
        info = error_handler.handle(Exception("database timeout"), "repository.init")

        assert info.category is ErrorCategory.DATABASE
        assert info.recovery_action is RecoveryAction.OFFLINE_MODE
        assert info.recovery_possible is True
        assert len(error_handler.get_log()) == 1
        assert error_handler.is_offline_mode()

    @pytest.mark.parametrize(
        "message,category",
        [
            ("Telegram WebApp not found", ErrorCategory.TELEGRAM),
            ("Supabase client is missing", ErrorCategory.DATABASE),
            ("Missing required methods: emit", ErrorCategory.SERVICE),
            ("fetch failed", ErrorCategory.NETWORK),
            ("NETWORK unreachable", ErrorCategory.NETWORK),
            ("login expired", ErrorCategory.AUTHENTICATION),
            ("Failed to load bundle", ErrorCategory.LOADING),
            ("script error", ErrorCategory.LOADING),
        ],
    )
    def test_textual_rules(self, error_handler, message, category):
        assert error_handler.classify(Exception(message)).category is category

    def test_first_matching_rule_wins(self, error_handler):
        info = error_handler.classify(Exception("database rejected auth"))
        assert info.category is ErrorCategory.DATABASE

    def test_typed_category_beats_message_text(self, error_handler):
        # "user" would match the authentication rule textually
        info = error_handler.classify(RepositoryError("user lookup failed"))

        assert info.category is ErrorCategory.DATABASE
        assert info.error_message == "user lookup failed"

    def test_platform_error_is_telegram(self, error_handler):
        info = error_handler.classify(PlatformError("no user data"))
        assert info.recovery_action is RecoveryAction.FALLBACK_MODE

    def test_bootstrap_error_inherits_original_category(self, error_handler):
        original = RepositoryError("connection refused")
        error = BootstrapError("Startup failed", step="repositories", original_error=original)

        assert error_handler.classify(error).category is ErrorCategory.DATABASE

    def test_service_details_are_prefixed(self, error_handler):
        info = error_handler.classify(ServiceMissingError("Gift service is not available", "Gift"))

        assert info.category is ErrorCategory.SERVICE
        assert info.technical_details == "Service error: Gift service is not available"
        assert info.recovery_possible is False

    def test_unknown_error(self, error_handler):
        info = error_handler.classify(Exception("something odd"))

        assert info.category is ErrorCategory.UNKNOWN
        assert info.user_message == GENERIC_USER_MESSAGE
        assert info.recovery_possible is False
        assert info.recovery_action is None

    def test_classify_never_raises(self, error_handler):
        info = error_handler.classify(Unprintable())

        assert info.category is ErrorCategory.UNKNOWN
        assert info.error_message == "Unknown error"

    def test_classify_none(self, error_handler):
        assert error_handler.classify(None).error_message == "Unknown error"

    def test_error_info_is_immutable(self, error_handler):
        info = error_handler.classify(Exception("x"))
        with pytest.raises(Exception):
            info.category = ErrorCategory.NETWORK


# =============================================================================
# ERROR LOG
# =============================================================================


class TestErrorLog:
    """Bounded FIFO log and its export."""

    def test_log_is_bounded_fifo(self, error_handler):
        for i in range(105):
            error_handler.handle(Exception(f"oops {i}"), "loop")

        log = error_handler.get_log()
        assert len(log) == 100
        assert log[0].info.error_message == "oops 5"
        assert log[-1].info.error_message == "oops 104"

    def test_small_capacity(self, store):
        handler = ErrorHandler(ErrorHandlerConfig(max_log_size=3), storage=store)
        for i in range(5):
            handler.handle(Exception(f"oops {i}"))

        assert [e.info.error_message for e in handler.get_log()] == ["oops 2", "oops 3", "oops 4"]

    def test_entry_keeps_context_and_error(self, error_handler):
        error = RepositoryError("write failed", table="users", operation="update")
        error_handler.handle(error, "UserService.update_user_points")

        entry = error_handler.get_log()[0]
        assert isinstance(entry, ErrorLogEntry)
        assert entry.context == "UserService.update_user_points"
        assert entry.original is error
        assert entry.error["name"] == "RepositoryError"
        assert entry.error["details"]["error_code"] == "REPOSITORY_ERROR"

    def test_default_context(self, error_handler):
        error_handler.handle(Exception("oops"))
        assert error_handler.get_log()[0].context == "unknown"

    def test_export_preserves_order(self, error_handler):
        for i in range(3):
            error_handler.handle(Exception(f"oops {i}"), f"ctx {i}")

        exported = json.loads(error_handler.export_log())

        assert [e["error_message"] for e in exported] == ["oops 0", "oops 1", "oops 2"]
        assert [e["context"] for e in exported] == ["ctx 0", "ctx 1", "ctx 2"]
        assert exported[0]["category"] == "unknown"
        assert exported[0]["error"]["name"] == "Exception"

    def test_export_to_file(self, error_handler, tmp_path):
        error_handler.handle(Exception("oops"), "ctx")
        target = tmp_path / "out" / "errors.json"

        error_handler.export_log(target)

        assert json.loads(target.read_text())[0]["error_message"] == "oops"

    def test_export_to_directory(self, error_handler, tmp_path):
        error_handler.handle(Exception("oops"), "ctx")

        error_handler.export_log(tmp_path)

        files = list(tmp_path.glob("fanzone-errors-*.json"))
        assert len(files) == 1

    def test_clear_log(self, error_handler):
        error_handler.handle(Exception("oops"))
        error_handler.clear_log()
        assert error_handler.get_log() == []

    def test_publishes_error_logged(self, error_handler, event_bus):
        received = []
        event_bus.subscribe("error:logged", received.append)

        error_handler.handle(Exception("oops"), "ctx")

        assert len(received) == 1
        assert received[0].context == "ctx"

    def test_bus_failure_does_not_escape(self, store):
        bus = MagicMock()
        bus.emit.side_effect = RuntimeError("bus down")
        handler = ErrorHandler(event_bus=bus, storage=store)

        info = handler.handle(Exception("oops"))

        assert isinstance(info, ErrorInfo)
        assert len(handler.get_log()) == 1


# =============================================================================
# NOTIFICATION AND CALLBACKS
# =============================================================================


class TestNotification:
    def test_notifier_receives_label(self, store):
        notifier = MagicMock()
        handler = ErrorHandler(storage=store, notifier=notifier)

        info = handler.handle(RepositoryError("down"))

        notifier.assert_called_once_with(info, "Use Offline Mode")

    def test_notifier_without_recovery_gets_no_label(self, store):
        notifier = MagicMock()
        handler = ErrorHandler(storage=store, notifier=notifier)

        info = handler.handle(Exception("oops"))

        notifier.assert_called_once_with(info, None)

    def test_failing_notifier_is_contained(self, store):
        handler = ErrorHandler(storage=store, notifier=MagicMock(side_effect=RuntimeError("ui gone")))
        handler.handle(Exception("oops"))
        assert len(handler.get_log()) == 1

    def test_callbacks_by_category(self, error_handler):
        database, auth = [], []
        error_handler.on_error(ErrorCategory.DATABASE, database.append)
        error_handler.on_error("authentication", auth.append)

        error_handler.handle(RepositoryError("down"))

        assert len(database) == 1
        assert auth == []

    def test_failing_callback_does_not_block_others(self, error_handler):
        seen = []
        error_handler.on_error(ErrorCategory.UNKNOWN, MagicMock(side_effect=RuntimeError("x")))
        error_handler.on_error(ErrorCategory.UNKNOWN, seen.append)

        error_handler.handle(Exception("oops"))

        assert len(seen) == 1


# =============================================================================
# RECOVERY
# =============================================================================


class TestRecovery:
    def test_fallback_mode_flag(self, error_handler):
        error_handler.handle(PlatformError("WebApp missing"))
        assert error_handler.is_fallback_mode()
        assert not error_handler.is_offline_mode()

    def test_offline_flag_is_persisted(self, error_handler, store):
        error_handler.enable_offline_mode()
        assert store.get_item(OFFLINE_MODE_KEY) == "true"

    def test_reauth_drops_credentials(self, error_handler, store, reload_hook):
        store.set_item(USER_KEY, "{}")
        store.set_item(AUTH_TOKEN_KEY, "token")

        error_handler.handle(Exception("login expired"))

        assert store.get_item(USER_KEY) is None
        assert store.get_item(AUTH_TOKEN_KEY) is None
        reload_hook.assert_called_once()

    def test_execute_recovery_reloads(self, error_handler, reload_hook):
        error_handler.execute_recovery(RecoveryAction.OFFLINE_MODE)

        assert error_handler.is_offline_mode()
        reload_hook.assert_called_once()

    def test_execute_recovery_accepts_strings(self, error_handler, reload_hook):
        error_handler.execute_recovery("retry")
        reload_hook.assert_called_once()

    def test_reload_without_hook_is_logged(self, store):
        handler = ErrorHandler(storage=store)
        handler.request_reload()

    def test_schedule_retry_without_loop_uses_timer(self, error_handler, reload_hook):
        fired = threading.Event()
        reload_hook.side_effect = lambda: fired.set()

        timer = error_handler.schedule_retry("ctx", delay=0.01)

        assert isinstance(timer, threading.Timer)
        assert fired.wait(2.0)

    @pytest.mark.asyncio
    async def test_schedule_retry_on_running_loop(self, error_handler, reload_hook):
        handle = error_handler.schedule_retry("ctx", delay=0.01)

        assert isinstance(handle, asyncio.TimerHandle)
        await asyncio.sleep(0.05)
        reload_hook.assert_called_once()

    @pytest.mark.asyncio
    async def test_network_error_schedules_retry(self, error_handler, reload_hook):
        error_handler.handle(Exception("network unreachable"), "gifts.load")

        reload_hook.assert_not_called()
        await asyncio.sleep(0.05)
        reload_hook.assert_called_once()

    @pytest.mark.parametrize(
        "action,label",
        [
            (RecoveryAction.FALLBACK_MODE, "Continue Without Telegram"),
            (RecoveryAction.OFFLINE_MODE, "Use Offline Mode"),
            (RecoveryAction.RETRY, "Try Again"),
            (RecoveryAction.REAUTH, "Login Again"),
            (None, "Try Again"),
        ],
    )
    def test_recovery_labels(self, action, label):
        assert ErrorHandler.get_recovery_label(action) == label
