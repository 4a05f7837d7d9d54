"""
FanZone - Error Classification and Recovery

Turns a raw failure plus a free-text context string into an actionable,
user-facing decision:

- classify(): category, localized user message and recovery action
- handle(): classify, record in the bounded error log, publish
  ``error:logged``, notify the user and run the automatic recovery
- recovery routines only set state (flags in the key-value store, a
  scheduled reload); the next bootstrap observes that state

Usage:
    handler = ErrorHandler(event_bus=bus, storage=store, reload=restart_app)
    info = handler.handle(exc, "repository.init")
    if info.recovery_action is RecoveryAction.OFFLINE_MODE:
        ...
"""
from __future__ import annotations

import asyncio
import json
import threading
import time
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from config import ErrorHandlerConfig
from core.errors import ErrorCategory, FanZoneError
from core.storage import (
    AUTH_TOKEN_KEY,
    FALLBACK_MODE_KEY,
    OFFLINE_MODE_KEY,
    USER_KEY,
    KeyValueStore,
    MemoryStore,
)
from observability.logging import get_logger


class RecoveryAction(str, Enum):
    """Automatic recovery routines."""

    FALLBACK_MODE = "fallback_mode"
    OFFLINE_MODE = "offline_mode"
    RETRY = "retry"
    REAUTH = "reauth"


@dataclass(frozen=True)
class CategoryRule:
    """
    Textual classification rule.

    Keywords are lower case and match the message case-insensitively.
    """

    category: ErrorCategory
    user_message: str
    keywords: Tuple[str, ...] = ()
    recovery_action: Optional[RecoveryAction] = None
    technical_prefix: str = ""

    def matches(self, message: str) -> bool:
        lowered = message.lower()
        return any(k in lowered for k in self.keywords)


GENERIC_USER_MESSAGE = "An unexpected error occurred. Please refresh and try again."

# Order matters: the first matching rule wins.
CLASSIFICATION_RULES: Tuple[CategoryRule, ...] = (
    CategoryRule(
        category=ErrorCategory.TELEGRAM,
        user_message=(
            "Telegram connection failed. Please ensure you're opening this "
            "from the Telegram app."
        ),
        keywords=("telegram", "webapp", "platform"),
        recovery_action=RecoveryAction.FALLBACK_MODE,
    ),
    CategoryRule(
        category=ErrorCategory.DATABASE,
        user_message=(
            "Database connection failed. Some features may be limited. "
            "The app will work in offline mode."
        ),
        keywords=("database", "supabase", "repository"),
        recovery_action=RecoveryAction.OFFLINE_MODE,
    ),
    CategoryRule(
        category=ErrorCategory.SERVICE,
        user_message="Some app services failed to load. Please refresh the page to try again.",
        keywords=("service", "dicontainer", "missing required"),
        technical_prefix="Service error: ",
    ),
    CategoryRule(
        category=ErrorCategory.NETWORK,
        user_message=(
            "Network connection problem. Please check your internet "
            "connection and try again."
        ),
        keywords=("network", "fetch", "timeout"),
        recovery_action=RecoveryAction.RETRY,
    ),
    CategoryRule(
        category=ErrorCategory.AUTHENTICATION,
        user_message="Authentication failed. Please try logging in again.",
        keywords=("auth", "login", "user"),
        recovery_action=RecoveryAction.REAUTH,
    ),
    CategoryRule(
        category=ErrorCategory.LOADING,
        user_message="Some app files failed to load. Please clear your cache and refresh.",
        keywords=("failed to load", "script", "404"),
    ),
)

RULES_BY_CATEGORY: Dict[ErrorCategory, CategoryRule] = {
    rule.category: rule for rule in CLASSIFICATION_RULES
}

RECOVERY_LABELS: Dict[RecoveryAction, str] = {
    RecoveryAction.FALLBACK_MODE: "Continue Without Telegram",
    RecoveryAction.OFFLINE_MODE: "Use Offline Mode",
    RecoveryAction.RETRY: "Try Again",
    RecoveryAction.REAUTH: "Login Again",
}


@dataclass(frozen=True)
class ErrorInfo:
    """Result of classifying one failure. Never mutated after creation."""

    category: ErrorCategory
    user_message: str
    technical_details: str
    error_message: str
    error_stack: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    recovery_possible: bool = False
    recovery_action: Optional[RecoveryAction] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "user_message": self.user_message,
            "technical_details": self.technical_details,
            "error_message": self.error_message,
            "error_stack": self.error_stack,
            "timestamp": self.timestamp,
            "recovery_possible": self.recovery_possible,
            "recovery_action": self.recovery_action.value if self.recovery_action else None,
        }


@dataclass(frozen=True)
class ErrorLogEntry:
    """Error log record: classification, call-site context and the error itself."""

    info: ErrorInfo
    context: str
    error: Dict[str, Any]
    original: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {**self.info.to_dict(), "context": self.context, "error": self.error}


Notifier = Callable[[ErrorInfo, Optional[str]], Any]
ErrorCallback = Callable[[ErrorLogEntry], Any]


def _describe_error(error: Any) -> Dict[str, Any]:
    if isinstance(error, BaseException):
        described: Dict[str, Any] = {
            "name": type(error).__name__,
            "message": getattr(error, "message", None) or str(error),
            "stack": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
        }
        if isinstance(error, FanZoneError):
            described["details"] = error.to_dict()
        return described
    return {"name": type(error).__name__, "message": repr(error), "stack": ""}


def _error_message(error: Any) -> str:
    if error is None:
        return "Unknown error"
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(error)
    return text or type(error).__name__


class ErrorHandler:
    """
    Process-wide error classifier, recovery dispatcher and bounded error log.

    The presentation channel is the optional ``notifier`` callable; without
    one, the user message is logged. ``reload`` is the host's restart hook,
    requested by the retry and re-authentication routines.
    """

    def __init__(
        self,
        config: Optional[ErrorHandlerConfig] = None,
        event_bus: Any = None,
        storage: Optional[KeyValueStore] = None,
        notifier: Optional[Notifier] = None,
        reload: Optional[Callable[[], Any]] = None,
    ):
        self.config = config or ErrorHandlerConfig()
        self.event_bus = event_bus
        self.storage = storage if storage is not None else MemoryStore()
        self.notifier = notifier
        self.reload = reload
        self.logger = get_logger("fanzone.errors")

        self._log: Deque[ErrorLogEntry] = deque(maxlen=self.config.max_log_size)
        self._callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def classify(self, error: Any) -> ErrorInfo:
        """Classify ``error``. Never raises."""
        try:
            message = _error_message(error)
        except Exception:
            message = "Unknown error"

        stack = ""
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            stack = "".join(traceback.format_tb(error.__traceback__))

        rule = self._match_rule(error, message)
        if rule is None:
            return ErrorInfo(
                category=ErrorCategory.UNKNOWN,
                user_message=GENERIC_USER_MESSAGE,
                technical_details=message,
                error_message=message,
                error_stack=stack,
            )

        return ErrorInfo(
            category=rule.category,
            user_message=rule.user_message,
            technical_details=f"{rule.technical_prefix}{message}",
            error_message=message,
            error_stack=stack,
            recovery_possible=rule.recovery_action is not None,
            recovery_action=rule.recovery_action,
        )

    @staticmethod
    def _match_rule(error: Any, message: str) -> Optional[CategoryRule]:
        category = getattr(error, "category", None)
        if isinstance(category, ErrorCategory):
            # Typed errors carry their category from the raise site
            return RULES_BY_CATEGORY.get(category)

        for rule in CLASSIFICATION_RULES:
            if rule.matches(message):
                return rule
        return None

    # -------------------------------------------------------------------------
    # Handling
    # -------------------------------------------------------------------------

    def handle(self, error: Any, context: str = "unknown") -> ErrorInfo:
        """Classify, log, publish, notify and recover. Returns the classification."""
        info = self.classify(error)
        entry = self._log_error(error, context, info)
        self._show_user_message(info)
        self._run_callbacks(entry)
        self.attempt_recovery(info, context)
        return info

    def _log_error(self, error: Any, context: str, info: ErrorInfo) -> ErrorLogEntry:
        entry = ErrorLogEntry(
            info=info,
            context=context,
            error=_describe_error(error),
            original=error,
        )
        self._log.append(entry)

        details: Dict[str, Any] = {
            "context": context,
            "category": info.category.value,
            "error_message": info.error_message,
            "user_message": info.user_message,
        }
        if self.config.debug:
            details["technical_details"] = info.technical_details
            details["stack"] = info.error_stack
            details["recovery"] = info.recovery_action.value if info.recovery_action else None
        self.logger.error("Error handled", **details)

        if self.event_bus is not None:
            try:
                self.event_bus.emit("error:logged", entry)
            except Exception as e:
                self.logger.warning("Failed to publish error:logged", error=str(e))

        return entry

    def _show_user_message(self, info: ErrorInfo) -> None:
        label = self.get_recovery_label(info.recovery_action) if info.recovery_possible else None

        if self.notifier is None:
            self.logger.info("User notification", message=info.user_message, action=label)
            return

        try:
            self.notifier(info, label)
        except Exception as e:
            self.logger.warning("Notifier failed", error=str(e))

    def _run_callbacks(self, entry: ErrorLogEntry) -> None:
        for callback in self._callbacks.get(entry.info.category, []):
            try:
                callback(entry)
            except Exception as e:
                self.logger.warning(
                    "Error callback failed",
                    category=entry.info.category.value,
                    error=str(e),
                )

    def on_error(self, category: Union[ErrorCategory, str], callback: ErrorCallback) -> None:
        """Register ``callback`` for every handled error of ``category``."""
        self._callbacks.setdefault(ErrorCategory(category), []).append(callback)

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def attempt_recovery(self, info: ErrorInfo, context: str) -> None:
        """Run the automatic recovery routine for ``info``, if it has one."""
        if not info.recovery_possible or info.recovery_action is None:
            return

        self.logger.info("Attempting recovery", action=info.recovery_action.value, context=context)

        action = info.recovery_action
        if action is RecoveryAction.FALLBACK_MODE:
            self.enable_fallback_mode()
        elif action is RecoveryAction.OFFLINE_MODE:
            self.enable_offline_mode()
        elif action is RecoveryAction.RETRY:
            self.schedule_retry(context)
        elif action is RecoveryAction.REAUTH:
            self.trigger_reauthentication()

    def execute_recovery(self, action: Union[RecoveryAction, str]) -> None:
        """User-triggered recovery: set the state and reload right away."""
        action = RecoveryAction(action)
        if action is RecoveryAction.FALLBACK_MODE:
            self.enable_fallback_mode()
            self.request_reload()
        elif action is RecoveryAction.OFFLINE_MODE:
            self.enable_offline_mode()
            self.request_reload()
        elif action is RecoveryAction.RETRY:
            self.request_reload()
        elif action is RecoveryAction.REAUTH:
            self.trigger_reauthentication()

    def enable_fallback_mode(self) -> None:
        """Disable platform-dependent features on the next start."""
        self.storage.set_item(FALLBACK_MODE_KEY, "true")
        self.logger.info("Fallback mode enabled")

    def enable_offline_mode(self) -> None:
        """Direct services to prefer local storage on the next start."""
        self.storage.set_item(OFFLINE_MODE_KEY, "true")
        self.logger.info("Offline mode enabled")

    def is_fallback_mode(self) -> bool:
        return self.storage.get_item(FALLBACK_MODE_KEY) == "true"

    def is_offline_mode(self) -> bool:
        return self.storage.get_item(OFFLINE_MODE_KEY) == "true"

    def schedule_retry(self, context: str, delay: Optional[float] = None) -> Any:
        """
        Request a reload after a fixed delay.

        Returns the asyncio TimerHandle when called inside a running loop,
        otherwise the started threading.Timer.
        """
        delay = self.config.retry_delay if delay is None else delay
        self.logger.info("Scheduling retry", context=context, delay_seconds=delay)

        def fire() -> None:
            self.logger.info("Retrying", context=context)
            self.request_reload()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            timer = threading.Timer(delay, fire)
            timer.daemon = True
            timer.start()
            return timer
        return loop.call_later(delay, fire)

    def trigger_reauthentication(self) -> None:
        """Drop stored credentials and request a reload."""
        self.logger.info("Triggering re-authentication")
        self.storage.remove_item(USER_KEY)
        self.storage.remove_item(AUTH_TOKEN_KEY)
        self.request_reload()

    def request_reload(self) -> None:
        if self.reload is None:
            self.logger.warning("Reload requested but no reload hook is configured")
            return
        self.reload()

    @staticmethod
    def get_recovery_label(action: Optional[Union[RecoveryAction, str]]) -> str:
        """Text for the retry affordance shown next to the user message."""
        if action is None:
            return "Try Again"
        return RECOVERY_LABELS.get(RecoveryAction(action), "Try Again")

    # -------------------------------------------------------------------------
    # Error log
    # -------------------------------------------------------------------------

    def get_log(self) -> List[ErrorLogEntry]:
        return list(self._log)

    def clear_log(self) -> None:
        self._log.clear()

    def export_log(self, path: Optional[Union[str, Path]] = None) -> str:
        """
        Serialize the error log to JSON, oldest entry first.

        When ``path`` is a directory the export is written to
        ``fanzone-errors-<epoch ms>.json`` inside it; any other path is
        written as given.
        """
        data = json.dumps([entry.to_dict() for entry in self._log], indent=2, default=str)

        if path is not None:
            target = Path(path)
            if target.is_dir():
                target = target / f"fanzone-errors-{int(time.time() * 1000)}.json"
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(data, encoding="utf-8")
            self.logger.info("Error log exported", path=str(target), entries=len(self._log))

        return data
