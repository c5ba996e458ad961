from __future__ import annotations

import threading

import pandas as pd
import pytest

from ordersync.core.scheduling import RealTimeScheduler, VirtualScheduler


def test_virtual_scheduler_fires_timers_in_due_order() -> None:
    scheduler = VirtualScheduler(start="2026-01-05T10:00:00Z")
    fired: list[tuple[str, float]] = []

    scheduler.call_later(10, lambda: fired.append(("b", scheduler.elapsed_seconds)))
    scheduler.call_later(5, lambda: fired.append(("a", scheduler.elapsed_seconds)))
    scheduler.call_later(10, lambda: fired.append(("c", scheduler.elapsed_seconds)))

    assert scheduler.next_delay() == 5
    assert scheduler.advance(9) == 1
    assert scheduler.advance(1) == 2
    assert fired == [("a", 5.0), ("b", 10.0), ("c", 10.0)]
    assert scheduler.now() == pd.Timestamp("2026-01-05T10:00:10Z")


def test_virtual_scheduler_runs_timers_scheduled_during_advance() -> None:
    scheduler = VirtualScheduler()
    fired: list[float] = []

    def _chain() -> None:
        fired.append(scheduler.elapsed_seconds)
        if len(fired) < 3:
            scheduler.call_later(2, _chain)

    scheduler.call_later(1, _chain)
    scheduler.advance(10)

    assert fired == [1.0, 3.0, 5.0]
    assert scheduler.pending_count == 0


def test_cancelled_handles_never_fire() -> None:
    scheduler = VirtualScheduler()
    fired: list[str] = []
    handle = scheduler.call_later(1, lambda: fired.append("x"))
    handle.cancel()

    assert scheduler.advance(5) == 0
    assert fired == []
    assert not handle.active
    with pytest.raises(ValueError, match="backwards"):
        scheduler.advance(-1)


def test_real_time_scheduler_accepts_callbacks_from_other_threads() -> None:
    scheduler = RealTimeScheduler()
    fired: list[str] = []

    worker = threading.Thread(target=lambda: scheduler.call_soon(lambda: fired.append("hello")))
    worker.start()
    worker.join()

    assert scheduler.run_until(lambda: bool(fired), timeout_seconds=2.0)
    assert fired == ["hello"]


def test_real_time_scheduler_times_out() -> None:
    scheduler = RealTimeScheduler()
    scheduler.call_later(30, lambda: None)

    assert scheduler.run_until(lambda: False, timeout_seconds=0.05) is False
