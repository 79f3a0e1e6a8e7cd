"""Client-side rate limiting.

Token bucket admission control used in front of every outbound request.
Tokens are refilled lazily from elapsed time at the top of each public
operation, so no background timer outlives the limiter. Callers that find
the bucket empty wait in a bounded FIFO queue served by a single drain task.
"""

import asyncio
import functools
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from avatar_sdk.core.logging import get_logger
from avatar_sdk.exceptions import RateLimitedError

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of limiter state."""
    tokens_available: int
    queue_depth: int
    max_tokens: int


class RateLimiter:
    """Token bucket rate limiter with a fair wait queue.

    Example:
        >>> limiter = RateLimiter(requests_per_second=5)
        >>> await limiter.acquire()
    """

    def __init__(
        self,
        requests_per_second: float = 5,
        max_burst: Optional[int] = None,
        queue_requests: bool = True,
        max_queue_size: int = 50,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize rate limiter.

        Args:
            requests_per_second: Average admitted requests per second
            max_burst: Bucket capacity (defaults to max(10, 2 * rps))
            queue_requests: Queue callers instead of rejecting them
            max_queue_size: Maximum number of waiting callers
            clock: Monotonic clock returning seconds
            sleep: Coroutine used by the drain task to wait for tokens
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        if max_burst is None:
            max_burst = max(10, math.ceil(requests_per_second * 2))
        if max_burst < 1:
            raise ValueError("max_burst must be at least 1")
        if max_queue_size < 0:
            raise ValueError("max_queue_size must not be negative")

        self.max_tokens = int(max_burst)
        self.refill_rate = float(requests_per_second)
        self.queue_requests = queue_requests
        self.max_queue_size = max_queue_size

        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.max_tokens)
        self._last_refill = clock()
        self._queue: Deque[asyncio.Future] = deque()
        self._drain_task: Optional[asyncio.Task] = None

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.max_tokens), self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def _wait_seconds(self) -> float:
        # Whole milliseconds until the next token, never zero.
        wait_ms = math.ceil((1 - self._tokens) * 1000.0 / self.refill_rate)
        return max(wait_ms, 1) / 1000.0

    async def acquire(self) -> None:
        """Wait until one request may proceed.

        Raises:
            RateLimitedError: If no token is available and queueing is
                disabled, the queue is full, or the limiter is reset while
                the caller waits.
        """
        self._refill()

        # Queued callers keep their place ahead of new arrivals.
        if not self._queue and self._tokens >= 1:
            self._tokens -= 1
            return

        if not self.queue_requests:
            logger.warning("Rate limit exceeded, queueing disabled")
            raise RateLimitedError()

        if len(self._queue) >= self.max_queue_size:
            logger.warning(f"Rate limiter queue full ({self.max_queue_size} pending)")
            raise RateLimitedError(
                f"Request queue full ({self.max_queue_size} pending). Please wait."
            )

        waiter = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        self._ensure_draining()
        try:
            await waiter
        except asyncio.CancelledError:
            # Free the slot now rather than when the drain task reaches it.
            try:
                self._queue.remove(waiter)
            except ValueError:
                pass
            raise

    def _ensure_draining(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        """Admit queued callers in order as tokens become available."""
        try:
            while self._queue:
                self._refill()
                if self._tokens >= 1:
                    waiter = self._queue.popleft()
                    if waiter.done():
                        # Cancelled by its caller; the token stays in the bucket.
                        continue
                    self._tokens -= 1
                    waiter.set_result(None)
                    logger.debug(f"Admitted queued request, {len(self._queue)} still waiting")
                else:
                    await self._sleep(self._wait_seconds())
        finally:
            if self._drain_task is asyncio.current_task():
                self._drain_task = None

    def get_status(self) -> RateLimitStatus:
        """Return the current token count, queue depth and capacity."""
        self._refill()
        return RateLimitStatus(
            tokens_available=math.floor(self._tokens),
            queue_depth=len(self._queue),
            max_tokens=self.max_tokens,
        )

    def reset(self) -> None:
        """Refill the bucket and fail every queued caller."""
        self._tokens = float(self.max_tokens)
        self._last_refill = self._clock()

        if self._drain_task is not None:
            self._drain_task.cancel()
            self._drain_task = None

        failed = 0
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.done():
                waiter.set_exception(RateLimitedError("Rate limiter reset"))
                failed += 1
        if failed:
            logger.info(f"Rate limiter reset, failed {failed} queued request(s)")


def with_rate_limit(limiter: RateLimiter) -> Callable[[F], F]:
    """Decorator that acquires a limiter token before each call.

    Example:
        >>> @with_rate_limit(limiter)
        ... async def fetch(url: str) -> bytes:
        ...     ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            await limiter.acquire()
            return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
