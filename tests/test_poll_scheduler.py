from __future__ import annotations

import pytest

from ordersync.connectors.base import (
    TrackingCredentialError,
    TrackingError,
    TrackingWindowClosedError,
    TransientNetworkError,
)
from ordersync.connectors.poll import DEFAULT_POLL_INTERVALS, PollConfig, PollScheduler
from ordersync.core.models import OrderSnapshot, order_from_wire
from ordersync.core.scheduling import VirtualScheduler
from ordersync.core.store import OrderSnapshotStore


class ScriptedFetch:
    def __init__(self, scheduler: VirtualScheduler, outcomes: list[str | Exception]) -> None:
        self._scheduler = scheduler
        self._outcomes = list(outcomes)
        self.call_times: list[float] = []

    def __call__(self, order_no: str, token: str) -> OrderSnapshot:
        del token
        self.call_times.append(self._scheduler.elapsed_seconds)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return order_from_wire({"order_no": order_no, "status": outcome, "type": "delivery"})


def _poller(
    scheduler: VirtualScheduler,
    fetch: ScriptedFetch,
    **callbacks: object,
) -> tuple[PollScheduler, OrderSnapshotStore]:
    store = OrderSnapshotStore(clock=scheduler.now)
    expired = callbacks.pop("expired", [False])
    poller = PollScheduler(
        fetch_order=fetch,
        store=store,
        scheduler=scheduler,
        is_expired=lambda: bool(expired[0]),
        **callbacks,
    )
    return poller, store


@pytest.mark.parametrize(
    ("previous_status", "new_status"),
    [
        ("ready", "pending"),
        ("pending", "confirmed"),
        ("confirmed", "preparing"),
        ("preparing", "ready"),
        ("ready", "delivering"),
        ("delivering", "waiting_pickup"),
        ("pending", "on_hold"),
    ],
)
def test_next_interval_uses_newly_observed_status(previous_status: str, new_status: str) -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(scheduler, [previous_status, new_status, new_status])
    poller, store = _poller(scheduler, fetch)

    poller.start("A", "tok")
    scheduler.run_pending()
    assert poller.last_delay_seconds == PollConfig().interval_for(previous_status)

    scheduler.advance(poller.last_delay_seconds)
    expected = DEFAULT_POLL_INTERVALS.get(new_status, 60.0)
    assert poller.last_delay_seconds == expected
    assert store.current().status == new_status
    assert scheduler.next_delay() == expected


def test_first_cycle_is_immediate_and_single_flight() -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(scheduler, ["preparing", "preparing"])
    poller, _ = _poller(scheduler, fetch)

    poller.start("A", "tok")
    poller.start("A", "tok")
    scheduler.run_pending()

    assert fetch.call_times == [0.0]
    assert scheduler.pending_count == 1
    scheduler.advance(45)
    assert fetch.call_times == [0.0, 45.0]


def test_transient_failure_retries_after_fixed_delay() -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(
        scheduler,
        ["ready", TransientNetworkError("timeout"), "delivering"],
    )
    poller, _ = _poller(scheduler, fetch)

    poller.start("A", "tok")
    scheduler.advance(20)
    assert poller.last_delay_seconds == 30.0
    scheduler.advance(30)

    assert fetch.call_times == [0.0, 20.0, 50.0]
    assert poller.last_delay_seconds == 20.0


def test_terminal_status_stops_polling_and_signals() -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(scheduler, ["delivered"])
    terminal: list[OrderSnapshot] = []
    poller, _ = _poller(scheduler, fetch, on_terminal=terminal.append)

    poller.start("A", "tok")
    scheduler.advance(600)

    assert [snapshot.status for snapshot in terminal] == ["delivered"]
    assert not poller.running
    assert fetch.call_times == [0.0]
    assert scheduler.pending_count == 0


@pytest.mark.parametrize(
    ("error", "callback_name"),
    [
        (TrackingCredentialError("not found", status_code=404), "on_fatal"),
        (TrackingWindowClosedError("gone", status_code=410), "on_window_closed"),
    ],
)
def test_non_retryable_errors_stop_polling(error: TrackingError, callback_name: str) -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(scheduler, [error])
    received: list[TrackingError] = []
    poller, _ = _poller(scheduler, fetch, **{callback_name: received.append})

    poller.start("A", "tok")
    scheduler.advance(600)

    assert received == [error]
    assert not poller.running
    assert fetch.call_times == [0.0]


def test_expired_session_stops_before_fetching() -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(scheduler, ["preparing"])
    expired_flag = [False]
    expired_calls: list[bool] = []
    poller, _ = _poller(
        scheduler,
        fetch,
        expired=expired_flag,
        on_expired=lambda: expired_calls.append(True),
    )

    poller.start("A", "tok")
    scheduler.run_pending()
    expired_flag[0] = True
    scheduler.advance(45)

    assert fetch.call_times == [0.0]
    assert expired_calls == [True]
    assert not poller.running


def test_stop_cancels_pending_cycle() -> None:
    scheduler = VirtualScheduler()
    fetch = ScriptedFetch(scheduler, ["preparing"])
    poller, _ = _poller(scheduler, fetch)

    poller.start("A", "tok")
    scheduler.run_pending()
    poller.stop()
    scheduler.advance(600)

    assert fetch.call_times == [0.0]


def test_poll_config_rejects_non_positive_intervals() -> None:
    with pytest.raises(ValueError, match="must be positive"):
        PollConfig(intervals={"pending": 0})
    assert PollConfig(intervals={"CANCELLED": 5}).intervals == {"canceled": 5.0}
    assert PollConfig().interval_for("completed") == 60.0
