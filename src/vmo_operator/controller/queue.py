"""
Deduplicating, rate-limited work queue for instance keys.

A key is queued at most once however many events arrive for it, and is never
handed to two workers at the same time: a key added while it is being
processed is parked and queued again when the worker calls ``done``.
"""

import asyncio
import collections
import logging
import time
from typing import Callable, Deque, Dict, Hashable, Optional, Set, Tuple

from .. import metrics

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ItemExponentialFailureRateLimiter:
    """Per-item delay doubling with every failure, capped at ``max_delay``."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        exponent = self._failures.get(item, 0)
        self._failures[item] = exponent + 1
        # Large exponents overflow float pow
        if exponent > 62:
            return self.max_delay
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def num_requeues(self, item: Hashable) -> int:
        return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        self._failures.pop(item, None)


class BucketRateLimiter:
    """Token bucket shared by all items: ``qps`` sustained, ``burst`` at once."""

    def __init__(self, qps: float = 10.0, burst: int = 100, clock: Clock = time.monotonic):
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()

    def when(self, item: Hashable) -> float:
        now = self._clock()
        self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.qps)
        self._last = now
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self.qps

    def num_requeues(self, item: Hashable) -> int:
        return 0

    def forget(self, item: Hashable) -> None:
        pass


class MaxOfRateLimiter:
    """Delay is the longest any of the wrapped limiters asks for."""

    def __init__(self, *limiters):
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)


def default_rate_limiter() -> MaxOfRateLimiter:
    """Per-item exponential backoff combined with an overall token bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


class RateLimitingQueue:
    """asyncio work queue with dedup, single-flight per key and delayed adds."""

    def __init__(self, rate_limiter=None, clock: Clock = time.monotonic):
        self.rate_limiter = rate_limiter or default_rate_limiter()
        self._clock = clock
        self._queue: Deque[Hashable] = collections.deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._getters: Deque[asyncio.Future] = collections.deque()
        self._timers: Set[asyncio.TimerHandle] = set()
        self._shutting_down = False
        self._last_enqueue: Optional[float] = None

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def last_enqueue(self) -> Optional[float]:
        """Clock reading of the last time a key entered the queue."""
        return self._last_enqueue

    @property
    def processing(self) -> int:
        return len(self._processing)

    def _wakeup_next(self) -> None:
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
                break

    def add(self, item: Hashable) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._last_enqueue = self._clock()
        metrics.queue_depth.set(len(self._queue))
        self._wakeup_next()

    async def get(self) -> Tuple[Optional[Hashable], bool]:
        """
        Wait for the next key.

        Returns:
            ``(key, False)``, or ``(None, True)`` once the queue is shut down
            and empty
        """
        while not self._queue:
            if self._shutting_down:
                return None, True
            getter = asyncio.get_running_loop().create_future()
            self._getters.append(getter)
            try:
                await getter
            except asyncio.CancelledError:
                getter.cancel()
                try:
                    self._getters.remove(getter)
                except ValueError:
                    pass
                # Pass the wakeup on if this getter was already chosen
                if self._queue and not getter.cancelled():
                    self._wakeup_next()
                raise

        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        metrics.queue_depth.set(len(self._queue))
        return item, False

    def done(self, item: Hashable) -> None:
        """Mark a key finished; re-queue it if it was added meanwhile."""
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.append(item)
            self._last_enqueue = self._clock()
            metrics.queue_depth.set(len(self._queue))
            self._wakeup_next()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return
        handle = None

        def fire():
            self._timers.discard(handle)
            self.add(item)

        handle = asyncio.get_running_loop().call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue a key after the delay the rate limiter chooses."""
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Clear the failure history of a key."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)

    def shut_down(self) -> None:
        """Stop accepting keys and release idle workers."""
        self._shutting_down = True
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
