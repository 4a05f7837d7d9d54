"""
FanZone - In-Process Event Bus

Synchronous and asynchronous publish/subscribe with bounded history.
Handlers registered before an emit receive it in registration order; the
history lets late subscribers replay what they missed.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from config import EventBusConfig
from observability.logging import get_logger

Handler = Callable[[Any], Any]
Unsubscribe = Callable[[], bool]


class EventNames:
    """Canonical event names shared by services and controllers."""

    # Application lifecycle
    APP_INITIALIZED = "app:initialized"

    # Authentication
    AUTH_SUCCESS = "auth:success"
    AUTH_FAILED = "auth:failed"
    AUTH_LOGOUT = "auth:logout"

    # User
    USER_REGISTERED = "user:registered"
    USER_UPDATED = "user:updated"
    USER_POINTS_UPDATED = "user:points:updated"

    # Gifts
    GIFT_PURCHASED = "gift:purchased"
    GIFT_PURCHASE_FAILED = "gift:purchase:failed"
    GIFTS_LOADED = "gifts:loaded"

    # Navigation and UI
    PAGE_CHANGED = "navigation:page:changed"
    THEME_CHANGED = "theme:changed"
    TOAST_SHOW = "ui:toast:show"

    # Network
    ONLINE = "network:online"
    OFFLINE = "network:offline"

    # Errors
    ERROR_OCCURRED = "error:occurred"
    ERROR_LOGGED = "error:logged"


@dataclass(frozen=True)
class EventRecord:
    """One entry of the emit history."""

    event: str
    data: Any
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.event, "data": self.data, "timestamp": self.timestamp}


class EventBus:
    """
    Observer-pattern event bus.

    Usage:
        bus = EventBus()
        await bus.initialize()

        unsubscribe = bus.subscribe("gift:purchased", on_purchase)
        bus.emit("gift:purchased", {"gift_id": "gift-1"})
        unsubscribe()
    """

    def __init__(self, config: Optional[EventBusConfig] = None):
        self.config = config or EventBusConfig()
        self.logger = get_logger("fanzone.events.bus")

        # Ordered sets: dict keys keep registration order
        self._handlers: Dict[str, Dict[Handler, None]] = {}
        self._once_handlers: Dict[str, Dict[Handler, None]] = {}
        self._history: Deque[EventRecord] = deque(maxlen=self.config.max_history_size)
        self._pending_tasks: Set[asyncio.Future] = set()

        self._initializing = False
        self._initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> "EventBus":
        """Mark the bus ready; ready on the next loop iteration."""
        if self._initialized or self._initializing:
            return self

        self._initializing = True
        try:
            await asyncio.sleep(0)
            self._initialized = True
        finally:
            self._initializing = False

        self.logger.debug("EventBus initialized")
        return self

    @property
    def initializing(self) -> bool:
        return self._initializing

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def is_ready(self) -> bool:
        return self._initialized and not self._initializing

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, event: str, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for ``event`` and return its unsubscribe callable."""
        if not callable(handler):
            raise TypeError("Handler must be callable")

        self._handlers.setdefault(event, {})[handler] = None
        self.logger.debug("Subscribed to event", event_name=event)
        return lambda: self.unsubscribe(event, handler)

    def once(self, event: str, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for the next emission of ``event`` only."""
        if not callable(handler):
            raise TypeError("Handler must be callable")

        self._once_handlers.setdefault(event, {})[handler] = None
        self.logger.debug("Subscribed once to event", event_name=event)
        return lambda: self.unsubscribe_once(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        return self._discard(self._handlers, event, handler)

    def unsubscribe_once(self, event: str, handler: Handler) -> bool:
        return self._discard(self._once_handlers, event, handler)

    @staticmethod
    def _discard(table: Dict[str, Dict[Handler, None]], event: str, handler: Handler) -> bool:
        handlers = table.get(event)
        if handlers is None or handler not in handlers:
            return False
        del handlers[handler]
        if not handlers:
            del table[event]
        return True

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def emit(self, event: str, data: Any = None) -> List[Any]:
        """
        Deliver ``data`` to every handler of ``event`` synchronously.

        Handler exceptions are logged and do not reach the publisher.
        Coroutines returned by handlers are scheduled on the running loop.
        """
        self._add_to_history(event, data)
        results: List[Any] = []

        for handler in self._take_handlers(event):
            try:
                result = handler(data)
            except Exception as e:
                self.logger.error("Error in event handler", event_name=event, error=str(e))
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
            results.append(result)

        return results

    async def emit_async(self, event: str, data: Any = None) -> List[Any]:
        """Deliver ``data`` to every handler of ``event``, awaiting each in turn."""
        self._add_to_history(event, data)
        results: List[Any] = []

        for handler in self._take_handlers(event):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as e:
                self.logger.error("Error in async event handler", event_name=event, error=str(e))

        return results

    def _take_handlers(self, event: str) -> List[Handler]:
        handlers = list(self._handlers.get(event, ()))
        once = self._once_handlers.pop(event, None)
        if once:
            handlers.extend(once)
        return handlers

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.logger.warning(
                "Async handler result dropped outside an event loop; use emit_async",
                event_name=event,
            )
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def has_handlers(self, event: str) -> bool:
        return event in self._handlers or event in self._once_handlers

    def get_handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, ())) + len(self._once_handlers.get(event, ()))

    def get_events(self) -> Dict[str, List[str]]:
        regular = list(self._handlers)
        one_time = list(self._once_handlers)
        return {
            "regular": regular,
            "one_time": one_time,
            "all": list(dict.fromkeys(regular + one_time)),
        }

    def clear(self, event: str) -> bool:
        had_handlers = self.has_handlers(event)
        self._handlers.pop(event, None)
        self._once_handlers.pop(event, None)
        return had_handlers

    def clear_all(self) -> None:
        self._handlers.clear()
        self._once_handlers.clear()

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _add_to_history(self, event: str, data: Any) -> None:
        self._history.append(EventRecord(event=event, data=data))

    def get_history(self, event: Optional[str] = None) -> List[EventRecord]:
        """Emitted events, oldest first, optionally filtered by name."""
        if event is None:
            return list(self._history)
        return [record for record in self._history if record.event == event]

    def clear_history(self) -> None:
        self._history.clear()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def wait_for(self, event: str, timeout: Optional[float] = 5.0) -> Any:
        """Suspend until ``event`` is emitted and return its payload."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def handler(data: Any) -> None:
            if not future.done():
                future.set_result(data)

        self.once(event, handler)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self.unsubscribe_once(event, handler)
            raise TimeoutError(f"Timeout waiting for event: {event}") from None

    def namespace(self, prefix: str) -> "NamespacedEventBus":
        return NamespacedEventBus(self, prefix)


class NamespacedEventBus:
    """View of an EventBus that prefixes every event name with ``<prefix>:``."""

    def __init__(self, bus: EventBus, prefix: str):
        self._bus = bus
        self.prefix = prefix

    def _name(self, event: str) -> str:
        return f"{self.prefix}:{event}"

    def subscribe(self, event: str, handler: Handler) -> Unsubscribe:
        return self._bus.subscribe(self._name(event), handler)

    def once(self, event: str, handler: Handler) -> Unsubscribe:
        return self._bus.once(self._name(event), handler)

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        return self._bus.unsubscribe(self._name(event), handler)

    def emit(self, event: str, data: Any = None) -> List[Any]:
        return self._bus.emit(self._name(event), data)

    async def emit_async(self, event: str, data: Any = None) -> List[Any]:
        return await self._bus.emit_async(self._name(event), data)

    def has_handlers(self, event: str) -> bool:
        return self._bus.has_handlers(self._name(event))

    def clear(self, event: str) -> bool:
        return self._bus.clear(self._name(event))

    def get_history(self, event: Optional[str] = None) -> List[EventRecord]:
        if event is None:
            prefix = f"{self.prefix}:"
            return [r for r in self._bus.get_history() if r.event.startswith(prefix)]
        return self._bus.get_history(self._name(event))

    async def wait_for(self, event: str, timeout: Optional[float] = 5.0) -> Any:
        return await self._bus.wait_for(self._name(event), timeout)
