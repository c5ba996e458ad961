"""Composition root: keep one order's status live for one viewer."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

import pandas as pd

from ordersync.connectors.base import (
    PushChannelFactory,
    TrackingCredentialError,
    TrackingError,
    TrackingWindowClosedError,
    TransientNetworkError,
    TransportState,
)
from ordersync.connectors.poll import FetchOrder, PollConfig, PollScheduler
from ordersync.connectors.push import (
    ConnectionManager,
    ConnectionState,
    PushConfig,
    websocket_channel_factory,
)
from ordersync.core.expiry import ExpiryConfig, ExpiryGuard
from ordersync.core.models import OrderSnapshot
from ordersync.core.scheduling import Scheduler, TimerHandle, cancel_handle
from ordersync.core.store import OrderSnapshotStore
from ordersync.core.timeline import TimelineView, build_timeline_view
from ordersync.ops.logging import EventLogger, NullEventLogger
from ordersync.ops.metrics import SyncMetrics

SessionState = Literal[
    "connecting",
    "live-push",
    "live-poll",
    "idle-expired",
    "idle-terminal",
    "failed",
    "closed",
]

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "connecting": frozenset(
        {"live-push", "live-poll", "idle-terminal", "idle-expired", "failed", "closed"}
    ),
    "live-push": frozenset(
        {"connecting", "live-poll", "idle-terminal", "idle-expired", "failed", "closed"}
    ),
    "live-poll": frozenset({"live-push", "idle-terminal", "idle-expired", "failed", "closed"}),
    "idle-terminal": frozenset({"idle-expired", "closed"}),
    "idle-expired": frozenset({"closed"}),
    "failed": frozenset({"connecting", "idle-terminal", "idle-expired", "closed"}),
    "closed": frozenset(),
}

_TRANSPORT_BY_STATE: dict[str, TransportState] = {
    "live-push": "live-push",
    "live-poll": "adaptive-poll",
}


@dataclass(slots=True)
class TrackingSession:
    """Identity of one tracked order; replaced, never mutated, on re-track."""

    order_no: str
    token: str = field(repr=False)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: pd.Timestamp | None = None
    expiry_deadline: pd.Timestamp | None = None

    def __post_init__(self) -> None:
        self.order_no = str(self.order_no).strip()
        if not self.order_no:
            msg = "order_no must be non-empty."
            raise ValueError(msg)
        if not str(self.token).strip():
            msg = "token must be non-empty."
            raise ValueError(msg)


@dataclass(slots=True, frozen=True)
class SyncView:
    """Aggregate read model for the presentation layer."""

    order_no: str
    state: SessionState
    transport_state: TransportState
    snapshot: OrderSnapshot | None
    timeline: TimelineView | None
    seconds_until_expiry: int | None
    error_message: str | None
    last_updated: pd.Timestamp | None


class SyncSession:
    """Wire store, expiry guard, push manager and poll fallback for one order.

    `start()` performs one blocking fetch, then hands live updates to the push
    channel. Polling takes over when push has not connected within the grace
    period or has spent its reconnect budget, and stops again as soon as push
    connects. A terminal status from any source stops both transports; a
    completed order then counts down its access window, does one final
    refetch and goes idle for good.
    """

    def __init__(
        self,
        *,
        order_no: str,
        token: str,
        fetch_order: FetchOrder,
        scheduler: Scheduler,
        push_config: PushConfig | None = None,
        poll_config: PollConfig | None = None,
        expiry_config: ExpiryConfig | None = None,
        channel_factory: PushChannelFactory | None = None,
        logger: EventLogger | None = None,
        metrics: SyncMetrics | None = None,
        session_id: str | None = None,
        tick_seconds: float = 1.0,
    ) -> None:
        if tick_seconds <= 0:
            msg = "tick_seconds must be positive."
            raise ValueError(msg)

        self.tracking = TrackingSession(order_no=order_no, token=token)
        if session_id is not None:
            self.tracking.session_id = str(session_id)
        self.push_config = push_config or PushConfig()
        self.scheduler = scheduler
        self.logger = logger or NullEventLogger()
        self.metrics = metrics or SyncMetrics()
        self.tick_seconds = float(tick_seconds)
        self._fetch_order = fetch_order

        self.store = OrderSnapshotStore(
            clock=scheduler.now,
            on_listener_error=self._on_listener_error,
        )
        self.expiry = ExpiryGuard(expiry_config)
        self.connection = ConnectionState(max_attempts=self.push_config.max_reconnect_attempts)
        self.poller = PollScheduler(
            fetch_order=fetch_order,
            store=self.store,
            scheduler=scheduler,
            is_expired=self.expiry.is_expired,
            config=poll_config,
            on_terminal=self._on_poll_terminal,
            on_fatal=self._on_fatal_error,
            on_window_closed=self._on_window_closed,
            on_expired=lambda: self._enter_expired("window_elapsed"),
            logger=self.logger,
            metrics=self.metrics,
            session_id=self.session_id,
        )
        self.push: ConnectionManager | None = None
        if self.push_config.enabled:
            self.push = ConnectionManager(
                config=self.push_config,
                scheduler=scheduler,
                store=self.store,
                channel_factory=channel_factory
                or websocket_channel_factory(
                    scheduler,
                    timeout_seconds=self.push_config.connect_timeout_seconds,
                ),
                state=self.connection,
                is_expired=self.expiry.is_expired,
                on_connected=self._on_push_connected,
                on_disconnected=self._on_push_disconnected,
                on_exhausted=self._on_push_exhausted,
                logger=self.logger,
                metrics=self.metrics,
                session_id=self.session_id,
            )

        self.error: TrackingError | None = None
        self._state: SessionState = "connecting"
        self._started = False
        self._grace_handle: TimerHandle | None = None
        self._tick_handle: TimerHandle | None = None
        self._unsubscribe = self.store.subscribe(self._on_snapshot)

    @property
    def session_id(self) -> str:
        return self.tracking.session_id

    @property
    def order_no(self) -> str:
        return self.tracking.order_no

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_snapshot(self) -> OrderSnapshot | None:
        return self.store.current()

    @property
    def current_timeline(self) -> TimelineView | None:
        snapshot = self.store.current()
        if snapshot is None:
            return None
        return build_timeline_view(
            snapshot.fulfillment_type,
            snapshot.payment_method,
            snapshot.status,
        )

    @property
    def transport_state(self) -> TransportState:
        return _TRANSPORT_BY_STATE.get(self._state, "none")

    @property
    def seconds_until_expiry(self) -> int | None:
        if self.expiry.is_expired():
            return 0
        return self.expiry.window_for(self.store.current(), self.scheduler.now())

    @property
    def is_idle(self) -> bool:
        return self._state in {"idle-expired", "idle-terminal", "failed", "closed"}

    def view(self) -> SyncView:
        return SyncView(
            order_no=self.order_no,
            state=self._state,
            transport_state=self.transport_state,
            snapshot=self.current_snapshot,
            timeline=self.current_timeline,
            seconds_until_expiry=self.seconds_until_expiry,
            error_message=None if self.error is None else self.error.user_message,
            last_updated=self.store.last_updated,
        )

    def start(self) -> TrackingError | None:
        """Run the initial fetch and start live updates.

        Network outcomes never raise: a failed initial load is returned and
        kept in `error`, with the session left in `failed`.
        """
        if self._started:
            return self.error
        self._started = True
        self.tracking.started_at = self.scheduler.now()
        self.logger.emit(
            level="info",
            event="session_started",
            session_id=self.session_id,
            order_no=self.order_no,
            push_enabled=self.push is not None,
        )

        try:
            snapshot = self._fetch_order(self.tracking.order_no, self.tracking.token)
        except TrackingWindowClosedError as error:
            self.metrics.record_fetch(failed=True)
            self.error = error
            self._enter_expired("server_closed")
            return error
        except Exception as error:
            self.metrics.record_fetch(failed=True)
            self.error = _as_tracking_error(error)
            self.logger.emit(
                level="error",
                event="initial_fetch_failed",
                session_id=self.session_id,
                error_type=type(self.error).__name__,
                error=str(self.error),
                status_code=self.error.status_code,
            )
            self._transition("failed", reason="initial_fetch_failed")
            return self.error

        self.metrics.record_fetch(failed=False)
        self.error = None
        self.store.merge(snapshot, source="initial")
        if self._state == "connecting":
            self._begin_live_updates()
        return None

    def manual_refresh(self) -> bool:
        """Fetch once on demand; refused once the order is terminal or expired."""
        if self._state in {"closed", "idle-expired", "idle-terminal"} or self.expiry.is_expired():
            return False
        was_failed = self._state == "failed"
        refreshed = self._one_shot_refresh("manual")
        if refreshed and was_failed and self._state == "failed":
            self.error = None
            self._transition("connecting", reason="manual_refresh")
            self._begin_live_updates()
        return refreshed

    def close(self) -> None:
        """Cancel every timer and close the channel; the session is done afterwards."""
        if self._state == "closed":
            return
        self._stop_transports()
        cancel_handle(self._tick_handle)
        self._tick_handle = None
        self._unsubscribe()
        self._transition("closed", reason="closed")
        self.metrics.finalize()
        self.logger.emit(
            level="info",
            event="session_closed",
            session_id=self.session_id,
            merges=self.store.merge_count,
        )

    def _transition(self, new_state: SessionState, *, reason: str | None = None) -> None:
        previous_state = self._state
        if new_state == previous_state:
            return
        if new_state not in _ALLOWED_TRANSITIONS[previous_state]:
            msg = f"Illegal session transition {previous_state!r} -> {new_state!r}."
            raise RuntimeError(msg)
        self._state = new_state
        self.logger.emit(
            level="info",
            event="state_changed",
            session_id=self.session_id,
            previous_state=previous_state,
            state=new_state,
            reason=reason,
        )

    def _begin_live_updates(self) -> None:
        if self.push is None:
            self._start_polling("push_disabled")
            return
        self._arm_grace_timer()
        self.push.open(self.tracking.order_no, self.tracking.token)

    def _arm_grace_timer(self) -> None:
        cancel_handle(self._grace_handle)
        self._grace_handle = self.scheduler.call_later(
            self.push_config.grace_seconds,
            self._on_grace_elapsed,
        )

    def _on_grace_elapsed(self) -> None:
        self._grace_handle = None
        if self._state != "connecting" or self.connection.push_connected:
            return
        self._start_polling("push_grace_elapsed")

    def _start_polling(self, reason: str) -> None:
        if self._state not in {"connecting", "live-push"}:
            return
        cancel_handle(self._grace_handle)
        self._grace_handle = None
        self.connection.channel = "poll"
        self._transition("live-poll", reason=reason)
        self.poller.start(self.tracking.order_no, self.tracking.token)

    def _stop_transports(self) -> None:
        cancel_handle(self._grace_handle)
        self._grace_handle = None
        if self.push is not None:
            self.push.close()
        self.poller.stop()
        self.connection.channel = "none"

    def _on_push_connected(self) -> None:
        if self._state not in {"connecting", "live-poll", "live-push"}:
            return
        cancel_handle(self._grace_handle)
        self._grace_handle = None
        self.poller.stop()
        self.connection.channel = "push"
        self._transition("live-push", reason="push_connected")

    def _on_push_disconnected(self, reason: str | None) -> None:
        if self._state != "live-push":
            return
        self._transition("connecting", reason=reason or "push_disconnected")
        self._arm_grace_timer()

    def _on_push_exhausted(self) -> None:
        if self._state in {"connecting", "live-push"}:
            self._start_polling("push_exhausted")

    def _on_snapshot(self, snapshot: OrderSnapshot, source: str) -> None:
        self.metrics.record_snapshot_change()
        self.logger.emit(
            level="info",
            event="snapshot_merged",
            session_id=self.session_id,
            source=source,
            status=snapshot.status,
            updated_at=snapshot.updated_at,
        )
        if self._state in {"closed", "idle-expired"}:
            return
        if snapshot.is_terminal_success and self.tracking.expiry_deadline is None:
            self.tracking.expiry_deadline = self.expiry.deadline_for(snapshot, self.scheduler.now())
        if snapshot.is_terminal:
            self._enter_terminal(snapshot)

    def _on_poll_terminal(self, snapshot: OrderSnapshot) -> None:
        self._enter_terminal(snapshot)

    def _enter_terminal(self, snapshot: OrderSnapshot) -> None:
        if self._state in {"idle-terminal", "idle-expired", "closed"}:
            return
        self._stop_transports()
        self._transition("idle-terminal", reason=snapshot.status)
        if snapshot.is_terminal_success:
            self._evaluate_expiry()

    def _evaluate_expiry(self) -> None:
        action = self.expiry.tick(self.store.current(), self.scheduler.now())
        if action == "expired":
            self._enter_expired(self.expiry.state.expired_reason or "window_elapsed")
            return
        if action == "final_refetch":
            self.logger.emit(
                level="info",
                event="expiry_final_refetch",
                session_id=self.session_id,
            )
            self._one_shot_refresh("final_refetch")
            self._enter_expired("window_elapsed")
            return
        if action == "counting" and self._tick_handle is None:
            self._tick_handle = self.scheduler.call_later(self.tick_seconds, self._on_tick)

    def _on_tick(self) -> None:
        self._tick_handle = None
        if self._state in {"closed", "idle-expired"}:
            return
        self._evaluate_expiry()

    def _enter_expired(self, reason: str) -> None:
        self.expiry.expire(reason)
        if self._state in {"idle-expired", "closed"}:
            return
        self._stop_transports()
        cancel_handle(self._tick_handle)
        self._tick_handle = None
        self._transition("idle-expired", reason=reason)
        self.logger.emit(
            level="info",
            event="session_expired",
            session_id=self.session_id,
            reason=reason,
        )

    def _on_fatal_error(self, error: TrackingError) -> None:
        self.error = error
        self.logger.emit(
            level="error",
            event="tracking_failed",
            session_id=self.session_id,
            error_type=type(error).__name__,
            error=str(error),
            status_code=error.status_code,
        )
        if self._state in {"closed", "failed", "idle-expired", "idle-terminal"}:
            return
        self._stop_transports()
        self._transition("failed", reason="credential_rejected")

    def _on_window_closed(self, error: TrackingError) -> None:
        self.error = error
        self._enter_expired("server_closed")

    def _one_shot_refresh(self, source: str) -> bool:
        """Fetch once and merge; shared by manual refresh and the final refetch."""
        if self._state == "closed":
            return False
        try:
            snapshot = self._fetch_order(self.tracking.order_no, self.tracking.token)
        except TrackingWindowClosedError as error:
            self.metrics.record_fetch(failed=True)
            self._on_window_closed(error)
            return False
        except TrackingCredentialError as error:
            self.metrics.record_fetch(failed=True)
            self._on_fatal_error(error)
            return False
        except Exception as error:
            self.metrics.record_fetch(failed=True)
            tracking_error = _as_tracking_error(error)
            self.logger.emit(
                level="warning",
                event="refresh_failed",
                session_id=self.session_id,
                source=source,
                error_type=type(tracking_error).__name__,
                error=str(tracking_error),
            )
            if self._state == "failed":
                self.error = tracking_error
            return False

        self.metrics.record_fetch(failed=False)
        self.store.merge(snapshot, source=source)
        return True

    def _on_listener_error(self, error: Exception) -> None:
        self.logger.emit(
            level="error",
            event="snapshot_listener_failed",
            session_id=self.session_id,
            error_type=type(error).__name__,
            error=str(error),
        )


def _as_tracking_error(error: Exception) -> TrackingError:
    if isinstance(error, TrackingError):
        return error
    wrapped = TransientNetworkError(f"Order fetch failed: {error}")
    wrapped.__cause__ = error
    return wrapped


class OrderTracker:
    """Entry point that owns at most one live `SyncSession`.

    `track()` always tears down the previous session and builds a fresh one,
    so timers and channels never leak across orders.
    """

    def __init__(
        self,
        *,
        fetch_order: FetchOrder,
        scheduler: Scheduler,
        push_config: PushConfig | None = None,
        poll_config: PollConfig | None = None,
        expiry_config: ExpiryConfig | None = None,
        channel_factory: PushChannelFactory | None = None,
        logger: EventLogger | None = None,
        metrics_factory: Callable[[], SyncMetrics] | None = None,
    ) -> None:
        self._fetch_order = fetch_order
        self._scheduler = scheduler
        self._push_config = push_config
        self._poll_config = poll_config
        self._expiry_config = expiry_config
        self._channel_factory = channel_factory
        self._logger = logger or NullEventLogger()
        self._metrics_factory = metrics_factory or SyncMetrics
        self._session: SyncSession | None = None

    @property
    def session(self) -> SyncSession | None:
        return self._session

    def track(self, order_no: str, token: str) -> SyncSession:
        """Close any current session, then start tracking `order_no`."""
        self.close()
        session = SyncSession(
            order_no=order_no,
            token=token,
            fetch_order=self._fetch_order,
            scheduler=self._scheduler,
            push_config=self._push_config,
            poll_config=self._poll_config,
            expiry_config=self._expiry_config,
            channel_factory=self._channel_factory,
            logger=self._logger,
            metrics=self._metrics_factory(),
        )
        self._session = session
        session.start()
        return session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
