"""
FanZone - Controller Base

Subscription state machine shared by every controller:

    Constructed (subscription_ready=False)
        -> Ready (subscription_ready=True)
        -> Destroyed

Subscriptions requested before the event bus is ready are queued and
promoted in order once it is. After destroy() every subscribe/emit is a
logged no-op, so a torn-down controller can never leak a live listener.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from config import EventBusConfig
from core.errors import DependencyContractViolation, EventBusTimeoutError

Handler = Callable[[Any], Any]
Unsubscribe = Callable[[], Any]

REQUIRED_BUS_METHODS = ("subscribe", "emit", "unsubscribe", "once", "has_handlers")
REQUIRED_LOGGER_METHODS = ("debug", "info", "warning", "error")


@dataclass(frozen=True)
class SubscriptionOptions:
    """Per-subscription behavior flags."""

    once: bool = False
    immediate: bool = False      # Bypass the pending queue
    replay_missed: bool = False  # Replay recent history after registering
    throw_errors: bool = False   # Re-raise handler exceptions instead of logging


@dataclass
class Subscription:
    event: str
    handler: Handler
    wrapped_handler: Handler
    unsubscribe: Unsubscribe
    options: SubscriptionOptions
    subscribed_at: float = field(default_factory=time.time)


@dataclass
class PendingSubscription:
    event: str
    handler: Handler
    options: SubscriptionOptions


def _missing_methods(obj: Any, names: tuple) -> List[str]:
    return [name for name in names if not callable(getattr(obj, name, None))]


def _record_field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


class ControllerBase:
    """
    Base class for controllers that consume the shared event stream.

    Usage:
        class GiftsController(ControllerBase):
            def __init__(self, event_bus, logger, gift_service):
                super().__init__(event_bus, logger)
                self.gift_service = gift_service
                self.subscribe("gift:purchased", self.on_purchase, replay_missed=True)

        controller = GiftsController(bus, get_logger("fanzone.gifts"), gifts)
        await controller.initialize_event_system()
    """

    def __init__(self, event_bus: Any, logger: Any, config: Optional[EventBusConfig] = None):
        self._validate_event_bus(event_bus)
        self._validate_logger(logger)

        self.event_bus = event_bus
        self.logger = logger
        self.config = config or EventBusConfig()

        self.subscriptions: List[Subscription] = []
        self.pending_subscriptions: List[PendingSubscription] = []
        self.enable_event_replay = True

        self._subscription_ready = False
        self._initialized = False
        self._destroyed = False
        self._replay_handles: List[asyncio.Handle] = []

    @staticmethod
    def _validate_event_bus(event_bus: Any) -> None:
        if event_bus is None:
            raise DependencyContractViolation("EventBus")
        missing = _missing_methods(event_bus, REQUIRED_BUS_METHODS)
        if missing:
            raise DependencyContractViolation("EventBus", missing)

    @staticmethod
    def _validate_logger(logger: Any) -> None:
        if logger is None:
            raise DependencyContractViolation("Logger")
        missing = _missing_methods(logger, REQUIRED_LOGGER_METHODS)
        if missing:
            raise DependencyContractViolation("Logger", missing)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def subscription_ready(self) -> bool:
        return self._subscription_ready

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def is_event_bus_ready(self) -> bool:
        """Bus present, able to subscribe and emit, and not mid-initialization."""
        try:
            return (
                self.event_bus is not None
                and callable(getattr(self.event_bus, "subscribe", None))
                and callable(getattr(self.event_bus, "emit", None))
                and not getattr(self.event_bus, "initializing", False)
            )
        except Exception:
            return False

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        event: str,
        handler: Handler,
        options: Optional[SubscriptionOptions] = None,
        **flags: bool,
    ) -> Unsubscribe:
        """
        Subscribe ``handler`` to ``event``.

        Options may be given as a SubscriptionOptions or as keyword flags.
        Returns a callable that undoes the subscription, whether it is live
        or still queued.
        """
        options = replace(options or SubscriptionOptions(), **flags)

        if self._destroyed:
            self.logger.warning("Subscribe on destroyed controller ignored", event_name=event)
            return lambda: False

        if not event or not isinstance(event, str):
            raise ValueError("Event name must be a non-empty string")
        if not callable(handler):
            raise TypeError("Event handler must be callable")

        if not self._subscription_ready and not options.immediate:
            self.logger.debug("Queuing subscription until controller is ready", event_name=event)
            self.pending_subscriptions.append(PendingSubscription(event, handler, options))
            return lambda: self.remove_pending_subscription(event, handler)

        wrapped = self._wrap_handler(event, handler, options)
        try:
            bus_unsubscribe = self.event_bus.subscribe(event, wrapped)
        except Exception as e:
            self.logger.error("Failed to subscribe to event", event_name=event, error=str(e))
            raise

        self.subscriptions.append(
            Subscription(
                event=event,
                handler=handler,
                wrapped_handler=wrapped,
                unsubscribe=bus_unsubscribe,
                options=options,
            )
        )
        self.logger.debug(
            "Subscribed to event",
            event_name=event,
            total_subscriptions=len(self.subscriptions),
            options=asdict(options),
        )

        if self.enable_event_replay and options.replay_missed:
            self._replay_missed_events(event, wrapped)

        return lambda: self._unsubscribe_wrapped(event, wrapped)

    def once(
        self,
        event: str,
        handler: Handler,
        options: Optional[SubscriptionOptions] = None,
        **flags: bool,
    ) -> Unsubscribe:
        return self.subscribe(event, handler, options, **{**flags, "once": True})

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        """Remove the live ``(event, handler)`` subscription; False when none exists."""
        for index, subscription in enumerate(self.subscriptions):
            if subscription.event == event and subscription.handler is handler:
                return self._drop_subscription(index, subscription)

        self.logger.warning("No subscription found for event", event_name=event)
        return False

    def _unsubscribe_wrapped(self, event: str, wrapped: Handler) -> bool:
        """Remove exactly the subscription registered with ``wrapped``."""
        for index, subscription in enumerate(self.subscriptions):
            if subscription.wrapped_handler is wrapped:
                return self._drop_subscription(index, subscription)

        self.logger.warning("No subscription found for event", event_name=event)
        return False

    def _drop_subscription(self, index: int, subscription: Subscription) -> bool:
        event = subscription.event
        try:
            result = subscription.unsubscribe()
        except Exception as e:
            self.logger.error("Failed to unsubscribe from event", event_name=event, error=str(e))
            return False

        del self.subscriptions[index]
        self.logger.debug(
            "Unsubscribed from event",
            event_name=event,
            remaining_subscriptions=len(self.subscriptions),
        )
        return result is not False

    def remove_pending_subscription(self, event: str, handler: Handler) -> bool:
        for index, pending in enumerate(self.pending_subscriptions):
            if pending.event == event and pending.handler is handler:
                del self.pending_subscriptions[index]
                self.logger.debug("Removed pending subscription", event_name=event)
                return True
        return False

    def _wrap_handler(self, event: str, handler: Handler, options: SubscriptionOptions) -> Handler:
        def wrapped(data: Any) -> Any:
            self.logger.debug("Received event", event_name=event)
            if options.once and not self._unsubscribe_wrapped(event, wrapped):
                # Already fired
                return None

            try:
                result = handler(data)
            except Exception as e:
                return self._handler_failed(event, e, options)

            if inspect.isawaitable(result):
                return self._await_isolated(event, result, options)
            return result

        return wrapped

    async def _await_isolated(self, event: str, awaitable: Any, options: SubscriptionOptions) -> Any:
        try:
            return await awaitable
        except Exception as e:
            return self._handler_failed(event, e, options)

    def _handler_failed(self, event: str, error: Exception, options: SubscriptionOptions) -> None:
        self.logger.error("Error in event handler", event_name=event, error=str(error))
        if options.throw_errors:
            raise error
        return None

    # -------------------------------------------------------------------------
    # Replay
    # -------------------------------------------------------------------------

    def _replay_missed_events(self, event: str, wrapped: Handler) -> None:
        get_history = getattr(self.event_bus, "get_history", None)
        if not callable(get_history):
            return

        try:
            cutoff = time.time() - self.config.replay_window_seconds
            recent = [
                record for record in get_history(event)
                if (_record_field(record, "timestamp") or 0) > cutoff
            ]
        except Exception as e:
            self.logger.error("Failed to read event history", event_name=event, error=str(e))
            return

        if not recent:
            return

        self.logger.debug("Replaying missed events", event_name=event, count=len(recent))

        def deliver() -> None:
            for record in recent:
                if self._destroyed:
                    return
                try:
                    result = wrapped(_record_field(record, "data"))
                except Exception as e:
                    self.logger.error("Error replaying event", event_name=event, error=str(e))
                    continue
                if inspect.isawaitable(result):
                    self._schedule_awaitable(event, result)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            deliver()
            return

        def run() -> None:
            if handle in self._replay_handles:
                self._replay_handles.remove(handle)
            deliver()

        # Later tick: never interleaved with live dispatch
        handle = loop.call_soon(run)
        self._replay_handles.append(handle)

    def _schedule_awaitable(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.logger.warning("Replayed coroutine dropped outside an event loop", event_name=event)
            return
        asyncio.ensure_future(awaitable, loop=loop)

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------

    async def wait_for_event_bus_ready(self, timeout: Optional[float] = None) -> None:
        """
        Poll until the bus is ready, then promote queued subscriptions.

        A destroyed controller stays destroyed: the call returns without
        becoming ready.

        Raises:
            EventBusTimeoutError: the bus did not become ready in time
        """
        if self._destroyed:
            self.logger.warning("Readiness wait on destroyed controller ignored")
            return

        timeout = self.config.ready_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while not self.is_event_bus_ready() and loop.time() < deadline:
            await asyncio.sleep(self.config.ready_poll_interval)
            if self._destroyed:
                self.logger.warning("Controller destroyed while waiting for the event bus")
                return

        if not self.is_event_bus_ready():
            raise EventBusTimeoutError(timeout)

        self._subscription_ready = True
        await self.process_pending_subscriptions()

    async def process_pending_subscriptions(self) -> None:
        """Promote queued subscriptions in order; failures stay queued."""
        if not self.pending_subscriptions:
            return

        self.logger.debug("Processing pending subscriptions", count=len(self.pending_subscriptions))

        pending = self.pending_subscriptions
        self.pending_subscriptions = []

        for entry in pending:
            try:
                self.subscribe(entry.event, entry.handler, replace(entry.options, immediate=True))
            except Exception as e:
                self.logger.error(
                    "Failed to process pending subscription",
                    event_name=entry.event,
                    error=str(e),
                )
                self.pending_subscriptions.append(entry)

    async def initialize_event_system(self) -> None:
        if self._initialized or self._destroyed:
            return

        self.logger.debug("Initializing controller event system")
        try:
            await self.wait_for_event_bus_ready()
        except Exception as e:
            self.logger.error("Failed to initialize controller event system", error=str(e))
            raise

        self._initialized = True
        self.logger.debug(
            "Controller event system initialized",
            subscriptions=len(self.subscriptions),
            pending=len(self.pending_subscriptions),
        )

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def emit(self, event: str, data: Any = None) -> Any:
        if self._destroyed:
            self.logger.warning("Emit from destroyed controller ignored", event_name=event)
            return None

        try:
            return self.event_bus.emit(event, data)
        except Exception as e:
            self.logger.error("Failed to emit event", event_name=event, error=str(e))
            raise

    async def emit_async(self, event: str, data: Any = None) -> Any:
        if self._destroyed:
            self.logger.warning("Async emit from destroyed controller ignored", event_name=event)
            return None

        try:
            return await self.event_bus.emit_async(event, data)
        except Exception as e:
            self.logger.error("Failed to emit async event", event_name=event, error=str(e))
            raise

    # -------------------------------------------------------------------------
    # Introspection and teardown
    # -------------------------------------------------------------------------

    def get_subscription_info(self) -> Dict[str, Any]:
        return {
            "active": len(self.subscriptions),
            "pending": len(self.pending_subscriptions),
            "ready": self._subscription_ready,
            "destroyed": self._destroyed,
            "events": [
                {
                    "event": sub.event,
                    "subscribed_at": sub.subscribed_at,
                    "options": asdict(sub.options),
                }
                for sub in self.subscriptions
            ],
        }

    def destroy(self) -> None:
        """Unsubscribe everything and move to the terminal state. Idempotent."""
        if self._destroyed:
            return

        self.logger.debug("Destroying controller", subscriptions=len(self.subscriptions))

        for handle in self._replay_handles:
            handle.cancel()
        self._replay_handles.clear()

        for subscription in list(self.subscriptions):
            try:
                subscription.unsubscribe()
            except Exception as e:
                self.logger.error(
                    "Error unsubscribing during destroy",
                    event_name=subscription.event,
                    error=str(e),
                )

        self.subscriptions.clear()
        self.pending_subscriptions.clear()

        self._destroyed = True
        self._initialized = False
        self._subscription_ready = False

        self.logger.debug("Controller destroyed")
