"""Deduplicating, delaying, rate-limited work queue.

Semantics follow the Kubernetes client-go workqueue:

* an item added while already queued collapses into the queued occurrence;
* an item added while a worker is processing it is held back until done() is called,
  so a key is never processed by two workers at once;
* add_rate_limited() schedules a re-add after the longer of a per-item exponential
  backoff (reset by forget()) and an overall token bucket.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable, Hashable, Protocol

logger = logging.getLogger(__name__)

# Beyond this exponent the delay is always max_delay.
_MAX_EXPONENT = 62


class RateLimiter(Protocol):
    def when(self, item: Hashable) -> float: ...

    def forget(self, item: Hashable) -> None: ...

    def num_requeues(self, item: Hashable) -> int: ...


class ExponentialBackoffRateLimiter:
    """Per-item exponential backoff: base_delay * 2**failures, capped at max_delay."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self._base = base_delay
        self._max = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        if exp > _MAX_EXPONENT:
            return self._max
        return min(self._base * (2 ** exp), self._max)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter:
    """Overall token bucket shared by all items: qps tokens per second, up to burst banked.

    Each when() reserves a token; once the bucket is empty the returned delay grows so
    re-adds are spread out at qps.
    """

    def __init__(self, qps: float = 10.0, burst: int = 100, clock: Callable[[], float] = time.monotonic):
        self._qps = qps
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(self._burst, self._tokens + (now - self._last) * self._qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """Combines limiters; the longest delay wins."""

    def __init__(self, *limiters: RateLimiter):
        self._limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self._limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self._limiters)


def default_controller_rate_limiter(base_delay: float = 0.005, max_delay: float = 1000.0) -> MaxOfRateLimiter:
    """Per-item exponential backoff combined with an overall 10 qps, burst 100 bucket."""
    return MaxOfRateLimiter(
        ExponentialBackoffRateLimiter(base_delay, max_delay),
        BucketRateLimiter(qps=10.0, burst=100),
    )


class RateLimitingQueue:
    """Thread-safe work queue shared by the controller workers."""

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._limiter = rate_limiter or default_controller_rate_limiter()
        self._clock = clock

        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._shutting_down = False

        # Delayed adds: heap of (ready_at, seq, item); _ready_at keeps the earliest time per item
        self._delay_cond = threading.Condition()
        self._heap: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._seq = itertools.count()
        self._delay_thread = threading.Thread(
            target=self._waiting_loop, name=f"workqueue-delay-{name}", daemon=True,
        )
        self._delay_thread.start()

    # ── Basic queue ─────────────────────────────────────────────────

    def add(self, item: Hashable) -> None:
        """Mark an item as needing processing."""
        with self._cond:
            if self._shutting_down:
                return
            if item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> tuple[Hashable | None, bool]:
        """Block until an item is available. Returns (item, shutdown).

        After shut_down() the remaining queued items are still handed out;
        (None, True) is returned once the queue is empty.
        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark an item as finished. Re-queues it if it was added while being processed."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def shut_down(self) -> None:
        """Stop accepting items and wake every blocked get()."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._delay_cond:
            self._delay_cond.notify_all()
        logger.debug("Work queue %s shutting down", self.name)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    # ── Delaying queue ──────────────────────────────────────────────

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add an item once the delay has passed."""
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = self._clock() + delay
        with self._delay_cond:
            existing = self._ready_at.get(item)
            if existing is not None and existing <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._heap, (ready_at, next(self._seq), item))
            self._delay_cond.notify()

    def _waiting_loop(self) -> None:
        while True:
            with self._delay_cond:
                if self._shutting_down:
                    return
                ready: list[Hashable] = []
                now = self._clock()
                while self._heap and self._heap[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._heap)
                    # Skip entries superseded by an earlier add_after()
                    if self._ready_at.get(item) == ready_at:
                        del self._ready_at[item]
                        ready.append(item)
                if not ready:
                    timeout = self._heap[0][0] - now if self._heap else None
                    self._delay_cond.wait(timeout)
                    continue
            for item in ready:
                self.add(item)

    # ── Rate limiting ───────────────────────────────────────────────

    def add_rate_limited(self, item: Hashable) -> None:
        """Re-add an item after its backoff delay."""
        self.add_after(item, self._limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Reset the backoff for an item. Does not remove it from the queue."""
        self._limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self._limiter.num_requeues(item)
