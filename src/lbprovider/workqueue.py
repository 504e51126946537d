"""Deduplicating work queue that serializes syncs per LoadBalancer key.

Event handlers enqueue objects from any thread. Workers take one key at a
time, so two syncs of the same key never overlap, while distinct keys are
processed in parallel by the worker pool.

The queue is a passthrough queue: it stores the newest object snapshot for a
pending key and hands that object to the sync handler.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import load_balancer_key

logger = logging.getLogger(__name__)

# Worker join timeout during shutdown
WORKER_JOIN_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential per-item backoff with a cap and a retry budget."""

    base_delay_seconds: float = 0.005
    max_delay_seconds: float = 300.0
    max_retries: int = 10

    def next_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        # Cap the exponent so large attempt counts cannot overflow
        exponent = min(attempt - 1, 62)
        return min(self.base_delay_seconds * (2**exponent), self.max_delay_seconds)


class BackoffTracker:
    """Tracks consecutive failures per key and derives the next delay.

    Independent from the sync logic: it only knows keys, attempt counts
    and delays.
    """

    def __init__(self, policy: RetryPolicy) -> None:
        self._policy = policy
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def retries(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def record_failure(self, key: str) -> float | None:
        """Record a failure and return the retry delay.

        Returns None when the retry budget is exhausted; the key's counter
        is then forgotten.
        """
        with self._lock:
            attempt = self._failures.get(key, 0) + 1
            if attempt > self._policy.max_retries:
                self._failures.pop(key, None)
                return None
            self._failures[key] = attempt
        return self._policy.next_delay(attempt)

    def forget(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)


class SyncQueue:
    """Passthrough work queue with per-key single flight and retries.

    Args:
        sync_handler: Called with the newest object snapshot of a key.
            Raising an exception schedules a retry with backoff.
        retry_policy: Backoff and retry budget for failed syncs.
        key_func: Maps an object to its queue key.
        name: Used in log records and worker thread names.
    """

    def __init__(
        self,
        sync_handler: Callable[[Any], None],
        *,
        retry_policy: RetryPolicy | None = None,
        key_func: Callable[[Any], str] = load_balancer_key,
        name: str = "sync",
    ) -> None:
        self._sync_handler = sync_handler
        self._key_func = key_func
        self._name = name
        self._backoff = BackoffTracker(retry_policy or RetryPolicy())

        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        # key -> newest object waiting to be processed
        self._dirty: dict[str, Any] = {}
        self._processing: set[str] = set()
        self._shutting_down = False

        self._timers: set[threading.Timer] = set()
        self._workers: list[threading.Thread] = []

    @property
    def backoff(self) -> BackoffTracker:
        return self._backoff

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def enqueue(self, obj: Any) -> None:
        """Queue ``obj`` for syncing. Never blocks on sync work."""
        self._add(self._key_func(obj), obj, replace=True)

    def enqueue_after(self, obj: Any, delay_seconds: float) -> None:
        """Queue ``obj`` once ``delay_seconds`` have elapsed.

        A newer snapshot enqueued in the meantime takes precedence over
        ``obj`` when the delay fires.
        """
        key = self._key_func(obj)
        if delay_seconds <= 0:
            self._add(key, obj, replace=False)
            return

        with self._cond:
            if self._shutting_down:
                return
            timer = threading.Timer(delay_seconds, self._fire_timer, args=(key, obj))
            timer.daemon = True
            self._timers.add(timer)
        timer.start()

    def _fire_timer(self, key: str, obj: Any) -> None:
        # Runs on the timer's own thread
        with self._cond:
            self._timers.discard(threading.current_thread())
        self._add(key, obj, replace=False)

    def _add(self, key: str, obj: Any, *, replace: bool) -> None:
        with self._cond:
            if self._shutting_down:
                return
            if key in self._dirty:
                if replace:
                    self._dirty[key] = obj
                return
            self._dirty[key] = obj
            if key in self._processing:
                # Requeued by _done once the in-flight sync returns
                return
            self._queue.append(key)
            self._cond.notify()

    def _get(self) -> tuple[str, Any] | None:
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if self._shutting_down:
                return None
            key = self._queue.popleft()
            obj = self._dirty.pop(key)
            self._processing.add(key)
            return key, obj

    def _done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def process_next(self) -> bool:
        """Process one item. Returns False once the queue is shut down."""
        item = self._get()
        if item is None:
            return False
        key, obj = item

        retry_after: float | None = None
        try:
            self._sync_handler(obj)
        except Exception as e:
            retry_after = self._handle_error(key, e)
        else:
            self._backoff.forget(key)
        finally:
            self._done(key)

        if retry_after is not None:
            self.enqueue_after(obj, retry_after)
        return True

    def _handle_error(self, key: str, error: Exception) -> float | None:
        delay = self._backoff.record_failure(key)
        if delay is None:
            logger.error(
                "Dropping item out of the queue after exhausting retries",
                extra={
                    "queue": self._name,
                    "key": key,
                    "max_retries": self._backoff.policy.max_retries,
                    "error": str(error),
                    "error_type": type(error).__name__,
                },
            )
            return None

        logger.warning(
            "Sync failed, retrying with backoff",
            extra={
                "queue": self._name,
                "key": key,
                "attempt": self._backoff.retries(key),
                "delay_seconds": delay,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
        return delay

    def _worker(self) -> None:
        while self.process_next():
            pass

    def run(self, workers: int) -> None:
        """Start ``workers`` worker threads and return."""
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")

        with self._cond:
            if self._shutting_down:
                raise RuntimeError(f"queue {self._name!r} has been shut down")

        for i in range(workers):
            thread = threading.Thread(
                target=self._worker, name=f"{self._name}-worker-{i}", daemon=True
            )
            self._workers.append(thread)
            thread.start()

        logger.info("Started sync workers", extra={"queue": self._name, "workers": workers})

    def shut_down(self) -> None:
        """Stop accepting work and wait for in-flight syncs to finish."""
        with self._cond:
            if self._shutting_down:
                return
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()

        for timer in timers:
            timer.cancel()

        current = threading.current_thread()
        for thread in self._workers:
            if thread is not current:
                thread.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS)

        logger.info("Sync queue shut down", extra={"queue": self._name})
