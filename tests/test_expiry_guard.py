from __future__ import annotations

import pandas as pd
import pytest

from ordersync.core.expiry import ExpiryConfig, ExpiryGuard
from ordersync.core.models import order_from_wire

NOW = pd.Timestamp("2026-01-05T10:00:00Z")


def _completed(seconds_ago: float | None, status: str = "completed"):
    payload = {"order_no": "A", "status": status}
    if seconds_ago is not None:
        payload["completed_at"] = (NOW - pd.Timedelta(seconds=seconds_ago)).isoformat()
    return order_from_wire(payload)


def test_window_for_in_progress_order_is_none() -> None:
    guard = ExpiryGuard()
    assert guard.window_for(order_from_wire({"order_no": "A", "status": "preparing"}), NOW) is None
    assert guard.window_for(order_from_wire({"order_no": "A", "status": "canceled"}), NOW) is None
    assert guard.window_for(None, NOW) is None


def test_window_for_completed_orders() -> None:
    guard = ExpiryGuard()
    assert guard.window_for(_completed(301), NOW) == 0
    assert guard.window_for(_completed(10), NOW) == 290
    assert guard.window_for(_completed(10.5), NOW) == 290
    assert guard.window_for(_completed(0, status="delivered"), NOW) == 300
    assert guard.window_for(_completed(20, status="picked_up"), NOW) == 280


def test_window_falls_back_to_updated_at_then_first_seen() -> None:
    guard = ExpiryGuard()
    updated_only = order_from_wire(
        {
            "order_no": "A",
            "status": "completed",
            "updated_at": (NOW - pd.Timedelta(seconds=100)).isoformat(),
        }
    )
    assert guard.window_for(updated_only, NOW) == 200

    no_timestamps = _completed(None)
    assert guard.window_for(no_timestamps, NOW) == 300
    assert guard.window_for(no_timestamps, NOW + pd.Timedelta(seconds=60)) == 240


def test_tick_requests_single_final_refetch_then_expires() -> None:
    guard = ExpiryGuard()
    snapshot = _completed(290)

    assert guard.tick(snapshot, NOW) == "counting"
    assert guard.tick(snapshot, NOW + pd.Timedelta(seconds=8)) == "counting"
    assert guard.tick(snapshot, NOW + pd.Timedelta(seconds=9)) == "final_refetch"
    assert not guard.is_expired()
    assert guard.tick(snapshot, NOW + pd.Timedelta(seconds=10)) == "expired"
    assert guard.is_expired()
    assert guard.tick(snapshot, NOW + pd.Timedelta(seconds=11)) == "expired"


def test_tick_expires_immediately_when_window_already_elapsed() -> None:
    guard = ExpiryGuard()

    assert guard.tick(_completed(400), NOW) == "expired"
    assert guard.is_expired()
    assert guard.state.final_refetch_triggered is False
    assert guard.state.expired_reason == "window_elapsed"


def test_tick_is_idle_for_orders_without_window() -> None:
    guard = ExpiryGuard()
    assert guard.tick(order_from_wire({"order_no": "A", "status": "ready"}), NOW) == "idle"
    assert not guard.state.armed


def test_expire_is_sticky_and_keeps_first_reason() -> None:
    guard = ExpiryGuard()
    guard.expire("server_closed")
    guard.expire("window_elapsed")

    assert guard.is_expired()
    assert guard.state.expired_reason == "server_closed"


def test_expiry_config_validation() -> None:
    with pytest.raises(ValueError, match="window_seconds"):
        ExpiryConfig(window_seconds=0)
    with pytest.raises(ValueError, match="final_refetch_at_seconds"):
        ExpiryConfig(final_refetch_at_seconds=-1)
