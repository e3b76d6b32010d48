"""Deduplicating, rate-limited async work queue of resource keys.

Semantics
---------
- A key is in at most one of three places: *pending* (queued), *in-flight*
  (returned by :meth:`WorkQueue.get` and not yet :meth:`WorkQueue.done`), or
  nowhere.
- Adding a pending key is a no-op.
- Adding an in-flight key marks it *dirty*; it is re-queued exactly once when
  the worker calls ``done``.  Two workers therefore never hold the same key.
- Rate-limited re-adds are scheduled on the event loop and never block the
  caller.

All methods must be called from the event loop that runs the workers.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque

from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import (
    workqueue_adds_total,
    workqueue_depth,
    workqueue_queue_duration_seconds,
    workqueue_retries_total,
)
from kubemirror.workqueue.rate_limiter import RateLimiter, default_controller_rate_limiter


class WorkQueue:
    """Work queue exposing add/get/done plus rate-limited re-adds.

    Usage::

        queue = WorkQueue()
        queue.add("default/web")
        key, shutdown = await queue.get()
        try:
            ...
        finally:
            queue.done(key)
    """

    def __init__(self, rate_limiter: RateLimiter | None = None, name: str = "default") -> None:
        self._name = name
        self._rate_limiter = rate_limiter or default_controller_rate_limiter()
        self._log = get_logger(f"workqueue.{name}")

        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._enqueued_at: dict[str, float] = {}

        # Blocked get() callers, woken one at a time
        self._getters: deque[asyncio.Future[None]] = deque()

        # Delayed adds: key -> (deadline, timer)
        self._waiting: dict[str, tuple[float, asyncio.TimerHandle]] = {}

        self._shutting_down = False
        self._drained: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Core queue operations
    # ------------------------------------------------------------------

    def add(self, key: str) -> None:
        """Queue ``key`` unless it is already pending.

        If ``key`` is in-flight it is only marked dirty and will be re-queued
        by :meth:`done`.  Ignored after shutdown.
        """
        if self._shutting_down:
            return
        if key in self._dirty:
            return
        workqueue_adds_total.labels(name=self._name).inc()
        self._dirty.add(key)
        if key in self._processing:
            return
        self._push(key)

    async def get(self) -> tuple[str | None, bool]:
        """Wait for the next key and mark it in-flight.

        Returns ``(key, False)``, or ``(None, True)`` once the queue has been
        shut down and no pending keys remain.
        """
        while not self._queue and not self._shutting_down:
            getter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._getters.append(getter)
            try:
                await getter
            except asyncio.CancelledError:
                getter.cancel()
                with contextlib.suppress(ValueError):
                    self._getters.remove(getter)
                # Pass the wake-up on if we were woken and then cancelled
                if self._queue:
                    self._wakeup_next()
                raise

        if not self._queue:
            return None, True

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)

        started = self._enqueued_at.pop(key, None)
        if started is not None:
            workqueue_queue_duration_seconds.labels(name=self._name).observe(time.monotonic() - started)
        workqueue_depth.labels(name=self._name).set(len(self._queue))
        return key, False

    def done(self, key: str) -> None:
        """Mark ``key`` finished; re-queue it if it was added while in-flight."""
        self._processing.discard(key)
        if key in self._dirty:
            self._push(key)
        if not self._processing and self._drained is not None:
            self._drained.set()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def in_flight(self) -> int:
        """Return how many keys are currently held by workers."""
        return len(self._processing)

    # ------------------------------------------------------------------
    # Delayed and rate-limited adds
    # ------------------------------------------------------------------

    def add_after(self, key: str, delay_s: float) -> None:
        """Add ``key`` after ``delay_s`` seconds without blocking the caller.

        If ``key`` is already waiting with an earlier deadline the call is a
        no-op; a later pending deadline is pulled forward.
        """
        if self._shutting_down:
            return
        if delay_s <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay_s
        existing = self._waiting.get(key)
        if existing is not None:
            if existing[0] <= deadline:
                return
            existing[1].cancel()
        handle = loop.call_at(deadline, self._fire_waiting, key)
        self._waiting[key] = (deadline, handle)

    def add_rate_limited(self, key: str) -> None:
        """Re-add ``key`` after the rate limiter's delay; increments its retry count."""
        delay = self._rate_limiter.when(key)
        workqueue_retries_total.labels(name=self._name).inc()
        self._log.debug("key_requeued_rate_limited", key=key, delay_s=delay)
        self.add_after(key, delay)

    def forget(self, key: str) -> None:
        """Reset the retry history of ``key``; queue membership is unchanged."""
        self._rate_limiter.forget(key)

    def num_requeues(self, key: str) -> int:
        return self._rate_limiter.num_requeues(key)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shut_down(self) -> None:
        """Stop accepting keys and release every blocked :meth:`get`. Idempotent."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for _deadline, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
        self._log.info("work_queue_shut_down", pending=len(self._queue), in_flight=len(self._processing))

    async def shut_down_with_drain(self) -> None:
        """Shut down, then wait until every in-flight key has been marked done."""
        self.shut_down()
        if not self._processing:
            return
        if self._drained is None:
            self._drained = asyncio.Event()
        await self._drained.wait()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _push(self, key: str) -> None:
        self._queue.append(key)
        self._enqueued_at.setdefault(key, time.monotonic())
        workqueue_depth.labels(name=self._name).set(len(self._queue))
        self._wakeup_next()

    def _wakeup_next(self) -> None:
        while self._getters:
            getter = self._getters.popleft()
            if not getter.done():
                getter.set_result(None)
                return

    def _fire_waiting(self, key: str) -> None:
        self._waiting.pop(key, None)
        self.add(key)
