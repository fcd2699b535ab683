"""Coalescing scheduler that batches bursts of remote events.

Every call to a wrapped handler is queued and a ``wait`` timer is (re)started.
When the timer fires, the queue is swapped out and each queued call runs in
enqueue order with its own arguments. A batch is never postponed beyond
``max_wait`` after its first call: once that bound is exceeded the next call
schedules an immediate flush instead of another ``wait``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any, Protocol

__all__ = ["Clock", "CoalescingScheduler", "Timer", "TimerHandle"]

logger = logging.getLogger("replicant.scheduler")

DEFAULT_WAIT = 0.05


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


type Clock = Callable[[], float]
type Timer = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_clock() -> float:
    return asyncio.get_running_loop().time()


def _loop_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class CoalescingScheduler:
    """Debounces handler invocations into FIFO batches.

    Parameters
    ----------
    wait : float
        Seconds of quiet before a batch is flushed.
    max_wait : float | None
        Upper bound (seconds) on how long the first call of a batch can be
        delayed. ``None`` means ``10 * wait`` (0.1 when ``wait`` is 0);
        ``0`` flushes on the first call made after any time has passed.
    clock : Clock | None
        Monotonic time source. Defaults to the running loop's ``time()``.
    timer : Timer | None
        ``timer(delay, callback)`` returning a cancellable handle. Defaults
        to the running loop's ``call_later``.

    Examples
    --------
    >>> scheduler = CoalescingScheduler(wait=0.05)
    >>> on_added = scheduler.wrap(replica.apply_added)
    >>> on_added("a", {"x": 1}, None, None)  # applied on the next flush
    """

    def __init__(
        self,
        wait: float = DEFAULT_WAIT,
        max_wait: float | None = None,
        *,
        clock: Clock | None = None,
        timer: Timer | None = None,
    ) -> None:
        if wait < 0:
            msg = f"wait must be >= 0, got {wait}"
            raise ValueError(msg)
        self._wait = wait
        self._max_wait = max_wait if max_wait is not None else (wait * 10 or 0.1)
        self._clock = clock or _loop_clock
        self._timer = timer or _loop_timer
        self._queue: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []
        self._started_at: float | None = None
        self._handle: TimerHandle | None = None

    @property
    def wait(self) -> float:
        return self._wait

    @property
    def max_wait(self) -> float:
        return self._max_wait

    @property
    def pending(self) -> int:
        """Number of calls waiting for the next flush."""
        return len(self._queue)

    def wrap(self, handler: Callable[..., Any]) -> Callable[..., None]:
        if not callable(handler):
            msg = f"Must provide a function to be batched. Got {handler!r}"
            raise TypeError(msg)

        @functools.wraps(handler)
        def batched(*args: Any) -> None:
            self._queue.append((handler, args))
            self._reset_timer()

        return batched

    def flush(self) -> None:
        """Run every queued call now, in the order it was queued."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._started_at = None
        batch, self._queue = self._queue, []
        if batch:
            logger.debug("Flushing %d batched call(s)", len(batch))
        for handler, args in batch:
            try:
                handler(*args)
            except Exception:
                logger.exception("Batched handler %r failed", handler)

    def cancel(self) -> None:
        """Drop the pending timer and every queued call."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._started_at = None
        self._queue.clear()

    def _reset_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        now = self._clock()
        if self._started_at is not None and now - self._started_at > self._max_wait:
            self._handle = self._timer(0, self._fire)
        else:
            if self._started_at is None:
                self._started_at = now
            self._handle = self._timer(self._wait, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self.flush()
