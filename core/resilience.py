"""
FanZone - Retry Policy

Bounded retry with exponential backoff for transient repository and
platform failures. Each attempt runs in its own OpenTelemetry span and
failed attempts are logged before the next one is scheduled.
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, ParamSpec, Set, Type, TypeVar

from opentelemetry import trace

from core.errors import DependencyContractViolation, ServiceValidationError
from observability.logging import get_logger

T = TypeVar("T")
P = ParamSpec("P")

tracer = trace.get_tracer(__name__)
logger = get_logger("fanzone.resilience")


@dataclass
class RetryConfig:
    """Configuration for retry policy."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Set[Type[Exception]] = field(
        default_factory=lambda: {Exception}
    )
    # Contract failures never heal by themselves
    non_retryable_exceptions: Set[Type[Exception]] = field(
        default_factory=lambda: {DependencyContractViolation, ServiceValidationError}
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


class RetryPolicy:
    """
    Retry with exponential backoff.

    Usage:
        policy = RetryPolicy(RetryConfig(max_attempts=3))

        @policy.wrap
        async def load_user():
            ...

        user = await policy.run(repository.read, "users", {"id": 1})
    """

    def __init__(self, config: Optional[RetryConfig] = None, name: str = "operation"):
        self.config = config or RetryConfig()
        self.name = name

    def calculate_delay(self, attempt: int) -> float:
        delay = min(
            self.config.base_delay * (self.config.exponential_base ** attempt),
            self.config.max_delay,
        )
        if self.config.jitter:
            delay *= 0.5 + random.random()
        return delay

    def is_retryable(self, exception: BaseException) -> bool:
        exc_type = type(exception)
        if any(issubclass(exc_type, t) for t in self.config.non_retryable_exceptions):
            return False
        return any(issubclass(exc_type, t) for t in self.config.retryable_exceptions)

    def _should_stop(self, attempt: int, error: Exception) -> bool:
        last = attempt >= self.config.max_attempts - 1
        if not self.is_retryable(error) or last:
            logger.warning(
                "Giving up",
                operation=self.name,
                attempt=attempt + 1,
                error=str(error),
                retryable=self.is_retryable(error),
            )
            return True
        logger.info(
            "Attempt failed, retrying",
            operation=self.name,
            attempt=attempt + 1,
            max_attempts=self.config.max_attempts,
            error=str(error),
        )
        return False

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func(*args, **kwargs)`` under this policy."""
        for attempt in range(self.config.max_attempts):
            with tracer.start_as_current_span(f"retry.{self.name}") as span:
                span.set_attribute("retry.attempt", attempt)
                span.set_attribute("retry.max_attempts", self.config.max_attempts)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("retry.exception", type(e).__name__)
                    if self._should_stop(attempt, e):
                        raise
                    delay = self.calculate_delay(attempt)
                    span.set_attribute("retry.delay_seconds", delay)
            await asyncio.sleep(delay)

        raise AssertionError("unreachable")

    def run_sync(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func(*args, **kwargs)`` under this policy, sleeping between attempts."""
        for attempt in range(self.config.max_attempts):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if self._should_stop(attempt, e):
                    raise
            time.sleep(self.calculate_delay(attempt))

        raise AssertionError("unreachable")

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorate ``func`` (sync or async) with this policy."""

        @functools.wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.run(func, *args, **kwargs)  # type: ignore[arg-type]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return self.run_sync(func, *args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    retryable_exceptions: Optional[Set[Type[Exception]]] = None,
    name: Optional[str] = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator for adding retry logic to a function.

    Usage:
        @with_retry(max_attempts=3)
        async def get_or_create_user():
            ...
    """
    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        retryable_exceptions=retryable_exceptions or {Exception},
    )

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        return RetryPolicy(config, name=name or func.__name__).wrap(func)

    return decorator
