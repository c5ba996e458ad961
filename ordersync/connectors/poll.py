"""Single-flight adaptive polling fallback."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from ordersync.connectors.base import (
    TrackingCredentialError,
    TrackingError,
    TrackingWindowClosedError,
)
from ordersync.core.models import OrderSnapshot, is_terminal_status, normalize_status
from ordersync.core.scheduling import Scheduler, TimerHandle, cancel_handle
from ordersync.core.store import OrderSnapshotStore
from ordersync.ops.logging import EventLogger, NullEventLogger
from ordersync.ops.metrics import SyncMetrics

DEFAULT_POLL_INTERVALS: dict[str, float] = {
    "pending": 30.0,
    "confirmed": 30.0,
    "preparing": 45.0,
    "ready": 20.0,
    "delivering": 20.0,
    "waiting_pickup": 60.0,
}

FetchOrder = Callable[[str, str], OrderSnapshot]


@dataclass(slots=True)
class PollConfig:
    """Per-status poll cadence; terminal and unknown statuses use the default."""

    intervals: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_POLL_INTERVALS))
    default_interval_seconds: float = 60.0
    failure_retry_seconds: float = 30.0

    def __post_init__(self) -> None:
        normalized: dict[str, float] = {}
        for status, seconds in self.intervals.items():
            if float(seconds) <= 0:
                msg = f"Poll interval for {status!r} must be positive."
                raise ValueError(msg)
            normalized[normalize_status(status)] = float(seconds)
        self.intervals = normalized
        if self.default_interval_seconds <= 0:
            msg = "default_interval_seconds must be positive."
            raise ValueError(msg)
        if self.failure_retry_seconds <= 0:
            msg = "failure_retry_seconds must be positive."
            raise ValueError(msg)

    def interval_for(self, status: str | None) -> float:
        normalized = normalize_status(status)
        if is_terminal_status(normalized):
            return float(self.default_interval_seconds)
        return float(self.intervals.get(normalized, self.default_interval_seconds))


class PollScheduler:
    """Self-rescheduling fetch loop with at most one cycle in flight.

    The next cycle is only scheduled once the current fetch has returned or
    raised. Successful fetches pick the next delay from the status just
    observed; transient failures always wait `failure_retry_seconds`.
    """

    def __init__(
        self,
        *,
        fetch_order: FetchOrder,
        store: OrderSnapshotStore,
        scheduler: Scheduler,
        is_expired: Callable[[], bool],
        config: PollConfig | None = None,
        on_terminal: Callable[[OrderSnapshot], None] | None = None,
        on_fatal: Callable[[TrackingError], None] | None = None,
        on_window_closed: Callable[[TrackingError], None] | None = None,
        on_expired: Callable[[], None] | None = None,
        logger: EventLogger | None = None,
        metrics: SyncMetrics | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config or PollConfig()
        self._fetch_order = fetch_order
        self._store = store
        self._scheduler = scheduler
        self._is_expired = is_expired
        self._on_terminal = on_terminal
        self._on_fatal = on_fatal
        self._on_window_closed = on_window_closed
        self._on_expired = on_expired
        self._logger = logger or NullEventLogger()
        self._metrics = metrics
        self._session_id = session_id

        self._order_no: str | None = None
        self._token: str | None = None
        self._running = False
        self._in_flight = False
        self._pending: TimerHandle | None = None
        self.last_delay_seconds: float | None = None
        self.cycles_completed = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self, order_no: str, token: str) -> None:
        """Begin polling with an immediate first cycle; no-op if already running."""
        if self._running:
            return
        self._order_no = str(order_no)
        self._token = str(token)
        self._running = True
        self._logger.emit(level="info", event="poll_started", session_id=self._session_id)
        self._schedule(0.0)

    def stop(self) -> None:
        """Cancel the pending cycle. A fetch already in flight is not merged afterwards."""
        if not self._running:
            return
        self._running = False
        cancel_handle(self._pending)
        self._pending = None
        self._logger.emit(
            level="info",
            event="poll_stopped",
            session_id=self._session_id,
            cycles_completed=self.cycles_completed,
        )

    def _schedule(self, delay_seconds: float) -> None:
        cancel_handle(self._pending)
        self.last_delay_seconds = float(delay_seconds)
        self._pending = self._scheduler.call_later(delay_seconds, self._run_cycle)

    def _run_cycle(self) -> None:
        self._pending = None
        if not self._running or self._in_flight:
            return
        if self._is_expired():
            self.stop()
            if self._on_expired is not None:
                self._on_expired()
            return

        order_no, token = self._order_no, self._token
        if order_no is None or token is None:
            msg = "PollScheduler.start() must be called before polling."
            raise RuntimeError(msg)
        self._in_flight = True
        try:
            snapshot = self._fetch_order(order_no, token)
        except TrackingWindowClosedError as error:
            self._in_flight = False
            self._record_fetch(failed=True)
            self.stop()
            if self._on_window_closed is not None:
                self._on_window_closed(error)
            return
        except TrackingCredentialError as error:
            self._in_flight = False
            self._record_fetch(failed=True)
            self.stop()
            if self._on_fatal is not None:
                self._on_fatal(error)
            return
        except Exception as error:
            self._in_flight = False
            self._record_fetch(failed=True)
            self._logger.emit(
                level="warning",
                event="poll_fetch_failed",
                session_id=self._session_id,
                error_type=type(error).__name__,
                error=str(error),
                retry_in_seconds=self.config.failure_retry_seconds,
            )
            if self._running:
                self._schedule(self.config.failure_retry_seconds)
            return

        self._in_flight = False
        self._record_fetch(failed=False)
        self.cycles_completed += 1
        if not self._running:
            return

        self._store.merge(snapshot, source="poll")
        if snapshot.is_terminal:
            self.stop()
            if self._on_terminal is not None:
                self._on_terminal(snapshot)
            return
        if self._running:
            self._schedule(self.config.interval_for(snapshot.status))

    def _record_fetch(self, *, failed: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_fetch(failed=failed)
