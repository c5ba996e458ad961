"""Timer sources driving every sync component on one logical thread."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import pandas as pd

from ordersync.core.models import normalize_timestamp, utc_now


@dataclass(slots=True, eq=False)
class TimerHandle:
    """Cancellable reference to one scheduled callback."""

    callback: Callable[[], None]
    when: float
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.fired

    def _run(self) -> None:
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.callback()


class Scheduler(Protocol):
    """Clock plus timer queue shared by the components of one session."""

    def now(self) -> pd.Timestamp: ...

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_soon(self, callback: Callable[[], None]) -> TimerHandle: ...


def cancel_handle(handle: TimerHandle | None) -> None:
    if handle is not None:
        handle.cancel()


@dataclass(slots=True)
class VirtualScheduler:
    """Deterministic scheduler with a manually advanced clock.

    Timers fire in due-time order (ties in scheduling order) only while
    `advance()` or `run_pending()` is executing, so tests control exactly
    which callbacks have run.
    """

    start: pd.Timestamp | str | None = None
    elapsed_seconds: float = 0.0
    _heap: list[tuple[float, int, TimerHandle]] = field(default_factory=list, init=False)
    _sequence: itertools.count = field(default_factory=itertools.count, init=False)

    def __post_init__(self) -> None:
        self.start = normalize_timestamp(self.start) or utc_now()

    def now(self) -> pd.Timestamp:
        return self.start + pd.Timedelta(seconds=self.elapsed_seconds)

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        if delay_seconds < 0:
            msg = "delay_seconds cannot be negative."
            raise ValueError(msg)
        handle = TimerHandle(callback=callback, when=self.elapsed_seconds + float(delay_seconds))
        heapq.heappush(self._heap, (handle.when, next(self._sequence), handle))
        return handle

    def call_soon(self, callback: Callable[[], None]) -> TimerHandle:
        return self.call_later(0.0, callback)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every timer that falls due. Returns fired count."""
        if seconds < 0:
            msg = "Cannot advance a virtual clock backwards."
            raise ValueError(msg)
        target = self.elapsed_seconds + float(seconds)
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            when, _, handle = heapq.heappop(self._heap)
            if not handle.active:
                continue
            self.elapsed_seconds = max(self.elapsed_seconds, when)
            handle._run()
            fired += 1
        self.elapsed_seconds = target
        return fired

    def run_pending(self) -> int:
        return self.advance(0.0)

    def pending(self) -> list[TimerHandle]:
        return sorted(
            (handle for _, _, handle in self._heap if handle.active),
            key=lambda handle: handle.when,
        )

    @property
    def pending_count(self) -> int:
        return len(self.pending())

    def next_delay(self) -> float | None:
        """Seconds until the next active timer, or None when idle."""
        active = self.pending()
        if not active:
            return None
        return active[0].when - self.elapsed_seconds


class RealTimeScheduler:
    """Wall-clock scheduler whose callbacks run on the thread calling `run_until`.

    `call_soon` and `call_later` may be invoked from any thread, which is how
    background I/O readers hand events back to the session thread.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()
        self._stop_requested = False

    def now(self) -> pd.Timestamp:
        return utc_now()

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        if delay_seconds < 0:
            msg = "delay_seconds cannot be negative."
            raise ValueError(msg)
        handle = TimerHandle(callback=callback, when=time.monotonic() + float(delay_seconds))
        with self._condition:
            heapq.heappush(self._heap, (handle.when, next(self._sequence), handle))
            self._condition.notify()
        return handle

    def call_soon(self, callback: Callable[[], None]) -> TimerHandle:
        return self.call_later(0.0, callback)

    def stop(self) -> None:
        """Ask a running `run_until` loop to return after the current callback."""
        with self._condition:
            self._stop_requested = True
            self._condition.notify()

    def run_until(
        self,
        stop_condition: Callable[[], bool] | None = None,
        timeout_seconds: float | None = None,
    ) -> bool:
        """Dispatch timers until `stop_condition()` holds, `stop()` or timeout.

        Returns False only when the timeout elapsed first.
        """
        deadline = None if timeout_seconds is None else time.monotonic() + float(timeout_seconds)
        while True:
            if stop_condition is not None and stop_condition():
                return True
            due_handle: TimerHandle | None = None
            with self._condition:
                if self._stop_requested:
                    self._stop_requested = False
                    return True
                current = time.monotonic()
                if deadline is not None and current >= deadline:
                    return False
                while self._heap and not self._heap[0][2].active:
                    heapq.heappop(self._heap)
                if self._heap and self._heap[0][0] <= current:
                    _, _, due_handle = heapq.heappop(self._heap)
                else:
                    wait_seconds: float | None = None
                    if self._heap:
                        wait_seconds = self._heap[0][0] - current
                    if deadline is not None:
                        remaining = deadline - current
                        wait_seconds = remaining if wait_seconds is None else min(wait_seconds, remaining)
                    self._condition.wait(timeout=wait_seconds)
                    continue
            due_handle._run()
