"""
Retry and circuit breaking around KeyCRM requests.

A fetch either gets every page or fails as a whole, so each page request
is retried on transient errors, and a breaker shared by the process stops
hammering KeyCRM once it keeps failing.
"""
import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from upsales.exceptions import KeyCRMConnectionError
from upsales.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class RetryConfig:
    """Attempts and exponential backoff (seconds) for one request."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Pause after the given failed attempt (1-based).

        A server-provided retry_after replaces the backoff when it is longer;
        both are capped at max_delay.
        """
        backoff = min(self.max_delay, self.base_delay * self.exponential_base ** (attempt - 1))
        backoff *= 1 + self.jitter * random.random()
        if retry_after:
            return max(backoff, min(retry_after, self.max_delay))
        return backoff


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    probe_requests: int = 1


class CircuitOpenError(KeyCRMConnectionError):
    """KeyCRM kept failing; requests are refused until the breaker cools down."""

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__("KeyCRM circuit is open, request not sent", retry_after=retry_after)


class CircuitBreaker:
    """
    Consecutive-failure breaker.

    After failure_threshold failures in a row the circuit opens and every
    request is refused. Once recovery_timeout has passed, up to
    probe_requests are let through: a success closes the circuit, a failure
    opens it again for another full timeout.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self._clock = clock
        self._opened_at = 0.0
        self._probes = 0
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    @property
    def remaining_timeout(self) -> float:
        """Seconds left before an open circuit lets a probe through."""
        if not self.is_open:
            return 0.0
        return max(0.0, self._opened_at + self.config.recovery_timeout - self._clock())

    def _trip(self, reason: str) -> None:
        self.state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            f"KeyCRM circuit opened: {reason}",
            extra={"failures": self.failure_count, "recovery_timeout": self.config.recovery_timeout}
        )

    async def can_execute(self) -> bool:
        async with self._lock:
            if self.is_open and self.remaining_timeout == 0.0:
                self.state = CircuitState.HALF_OPEN
                self._probes = 0
                logger.info("KeyCRM circuit half-open, probing")

            if self.state is CircuitState.CLOSED:
                return True
            if self.state is CircuitState.HALF_OPEN and self._probes < self.config.probe_requests:
                self._probes += 1
                return True
            return False

    async def record_success(self) -> None:
        async with self._lock:
            if self.state is CircuitState.HALF_OPEN:
                logger.info("KeyCRM circuit closed after a successful probe")
            self.state = CircuitState.CLOSED
            self.failure_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self.failure_count += 1
            if self.state is CircuitState.HALF_OPEN:
                self._trip("probe failed")
            elif self.state is CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
                self._trip(f"{self.failure_count} failures in a row")

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Await func(*args, **kwargs) if the circuit allows it."""
        if not await self.can_execute():
            raise CircuitOpenError(retry_after=self.remaining_timeout)
        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self.record_failure()
            raise
        await self.record_success()
        return result


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[BaseException], ...] = (KeyCRMConnectionError,),
    label: Optional[str] = None,
    **kwargs
) -> T:
    """
    Await func until it succeeds or config.max_attempts is spent.

    Only retryable_exceptions are retried; anything else propagates from the
    first attempt. The last retryable error is re-raised once attempts run out.
    """
    config = config or RetryConfig()
    label = label or getattr(func, "__name__", "request")
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt >= config.max_attempts:
                logger.error(
                    f"{label} gave up after {attempt} attempts: {e}",
                    extra={"attempts": attempt}
                )
                raise
            delay = config.delay_for(attempt, getattr(e, "retry_after", None))
            logger.warning(
                f"{label} failed (attempt {attempt}/{config.max_attempts}), next try in {delay:.2f}s: {e}",
                extra={"attempt": attempt, "delay": round(delay, 2)}
            )
            await asyncio.sleep(delay)
