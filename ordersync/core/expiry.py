"""Post-completion access window for tracked orders."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

import pandas as pd

from ordersync.core.models import OrderSnapshot

ExpiryAction = Literal["idle", "counting", "final_refetch", "expired"]


@dataclass(slots=True)
class ExpiryConfig:
    """Access-window settings."""

    window_seconds: float = 300.0
    final_refetch_at_seconds: int = 1

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            msg = "window_seconds must be positive."
            raise ValueError(msg)
        if self.final_refetch_at_seconds < 0:
            msg = "final_refetch_at_seconds cannot be negative."
            raise ValueError(msg)


@dataclass(slots=True)
class ExpiryState:
    """Current access-window state for one tracking session."""

    armed: bool = False
    success_observed_at: pd.Timestamp | None = None
    final_refetch_triggered: bool = False
    expired: bool = False
    expired_reason: str | None = None


class ExpiryGuard:
    """Count down the access window of a successfully completed order.

    Only terminal success statuses (`completed`, `delivered`, `picked_up`) get
    a window; in-progress and canceled orders never expire here. When a live
    countdown reaches the final second, `tick()` asks for exactly one final
    refetch; the owner performs it and then calls `expire()`.
    """

    def __init__(self, config: ExpiryConfig | None = None) -> None:
        self.config = config or ExpiryConfig()
        self.state = ExpiryState()

    def completion_time(self, snapshot: OrderSnapshot, now: pd.Timestamp) -> pd.Timestamp | None:
        """Instant the window is measured from, or None for orders without a window."""
        if not snapshot.is_terminal_success:
            return None
        if snapshot.completed_at is not None:
            return snapshot.completed_at
        if snapshot.updated_at is not None:
            return snapshot.updated_at
        if self.state.success_observed_at is None:
            self.state.success_observed_at = now
        return self.state.success_observed_at

    def deadline_for(self, snapshot: OrderSnapshot, now: pd.Timestamp) -> pd.Timestamp | None:
        completed_at = self.completion_time(snapshot, now)
        if completed_at is None:
            return None
        return completed_at + pd.Timedelta(seconds=self.config.window_seconds)

    def window_for(self, snapshot: OrderSnapshot | None, now: pd.Timestamp) -> int | None:
        """Whole seconds left in the access window, None when no window applies."""
        if snapshot is None:
            return None
        completed_at = self.completion_time(snapshot, now)
        if completed_at is None:
            return None
        elapsed_seconds = (now - completed_at).total_seconds()
        remaining = max(self.config.window_seconds - elapsed_seconds, 0.0)
        return int(math.ceil(remaining))

    def tick(self, snapshot: OrderSnapshot | None, now: pd.Timestamp) -> ExpiryAction:
        """Advance the countdown by one observation."""
        if self.state.expired:
            return "expired"
        remaining = self.window_for(snapshot, now)
        if remaining is None:
            return "idle"

        was_live = self.state.armed
        self.state.armed = True
        if remaining <= 0 and not was_live:
            self.expire("window_elapsed")
            return "expired"
        if remaining <= self.config.final_refetch_at_seconds:
            if self.state.final_refetch_triggered:
                self.expire("window_elapsed")
                return "expired"
            self.state.final_refetch_triggered = True
            return "final_refetch"
        return "counting"

    def is_expired(self) -> bool:
        return self.state.expired

    def expire(self, reason: str = "window_elapsed") -> None:
        """Enter the expired state; it is never left again."""
        if self.state.expired:
            return
        self.state.expired = True
        self.state.expired_reason = reason
