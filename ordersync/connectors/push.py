"""Push-channel lifecycle: connect, receive, bounded reconnect with backoff."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import quote

from ordersync.connectors.base import MalformedMessageError, PushChannel, PushChannelFactory
from ordersync.core.models import MalformedOrderPayloadError, OrderSnapshot, order_from_wire
from ordersync.core.scheduling import Scheduler, TimerHandle, cancel_handle
from ordersync.core.store import OrderSnapshotStore
from ordersync.ops.logging import EventLogger, NullEventLogger
from ordersync.ops.metrics import SyncMetrics
from ordersync.ops.secrets import redact_url_token

ChannelKind = Literal["none", "push", "poll"]

ORDER_UPDATE_EVENT = "order_update"


@dataclass(slots=True)
class PushConfig:
    """Push channel address and reconnect budget."""

    url_template: str | None = None
    grace_seconds: float = 5.0
    reconnect_base_seconds: float = 5.0
    reconnect_cap_seconds: float = 30.0
    max_reconnect_attempts: int = 3
    connect_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.url_template is not None:
            template = str(self.url_template).strip()
            if not template:
                msg = "url_template cannot be blank when provided."
                raise ValueError(msg)
            if "{order_no}" not in template:
                msg = "url_template must contain an {order_no} placeholder."
                raise ValueError(msg)
            self.url_template = template
        if self.grace_seconds < 0:
            msg = "grace_seconds cannot be negative."
            raise ValueError(msg)
        if self.reconnect_base_seconds <= 0:
            msg = "reconnect_base_seconds must be positive."
            raise ValueError(msg)
        if self.reconnect_cap_seconds < self.reconnect_base_seconds:
            msg = "reconnect_cap_seconds must be >= reconnect_base_seconds."
            raise ValueError(msg)
        if self.max_reconnect_attempts < 0:
            msg = "max_reconnect_attempts cannot be negative."
            raise ValueError(msg)
        if self.connect_timeout_seconds <= 0:
            msg = "connect_timeout_seconds must be positive."
            raise ValueError(msg)

    @property
    def enabled(self) -> bool:
        return self.url_template is not None

    def backoff_for(self, attempts: int) -> float:
        """Linear backoff: base * (attempts + 1), capped."""
        return min(self.reconnect_base_seconds * (attempts + 1), self.reconnect_cap_seconds)

    def url_for(self, order_no: str, token: str) -> str:
        if self.url_template is None:
            msg = "Push channel is disabled: no url_template configured."
            raise ValueError(msg)
        return self.url_template.format(
            order_no=quote(str(order_no), safe=""),
            token=quote(str(token), safe=""),
        )


@dataclass(slots=True)
class ConnectionState:
    """Transport bookkeeping owned by the sync session."""

    channel: ChannelKind = "none"
    reconnect_attempts: int = 0
    max_attempts: int = 3
    push_connected: bool = False
    exhausted: bool = False

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.reconnect_attempts, 0)


def decode_push_frame(raw_message: str | bytes, *, order_no: str | None = None) -> OrderSnapshot:
    """Decode one inbound frame into a snapshot or raise `MalformedMessageError`."""
    if isinstance(raw_message, bytes):
        try:
            message_text = raw_message.decode("utf-8")
        except UnicodeDecodeError as error:
            msg = "Push frame is not valid UTF-8."
            raise MalformedMessageError(msg) from error
    else:
        message_text = str(raw_message)

    stripped = message_text.strip()
    if not stripped:
        msg = "Push frame is empty."
        raise MalformedMessageError(msg)
    try:
        payload: Any = json.loads(stripped)
    except json.JSONDecodeError as error:
        msg = "Push frame is not valid JSON."
        raise MalformedMessageError(msg) from error

    if not isinstance(payload, dict):
        msg = "Push frame must be a JSON object."
        raise MalformedMessageError(msg)
    if payload.get("type") != ORDER_UPDATE_EVENT:
        msg = f"Ignoring push frame of type {payload.get('type')!r}."
        raise MalformedMessageError(msg)
    order_payload = payload.get("order")
    if not isinstance(order_payload, dict):
        msg = "order_update frame carries no order object."
        raise MalformedMessageError(msg)

    try:
        snapshot = order_from_wire(
            order_payload,
            payload.get("last_payment"),
            default_order_no=order_no,
        )
    except MalformedOrderPayloadError as error:
        raise MalformedMessageError(str(error)) from error

    if order_no is not None and snapshot.order_no != str(order_no):
        msg = f"Push frame is for order {snapshot.order_no!r}, not {order_no!r}."
        raise MalformedMessageError(msg)
    return snapshot


class ConnectionManager:
    """Own one push channel: open, receive, reconnect with backoff, give up.

    Reconnect delays grow linearly (`base * (attempts + 1)`, capped) and the
    attempt counter resets on every successful connect. A disconnect with the
    budget spent emits `exhausted` once; falling back to polling is the
    owner's decision. Callbacks from a channel replaced or closed earlier are
    ignored.
    """

    def __init__(
        self,
        *,
        config: PushConfig,
        scheduler: Scheduler,
        store: OrderSnapshotStore,
        channel_factory: PushChannelFactory,
        state: ConnectionState | None = None,
        is_expired: Callable[[], bool] | None = None,
        headers: dict[str, str] | None = None,
        on_connected: Callable[[], None] | None = None,
        on_disconnected: Callable[[str | None], None] | None = None,
        on_update: Callable[[OrderSnapshot], None] | None = None,
        on_exhausted: Callable[[], None] | None = None,
        logger: EventLogger | None = None,
        metrics: SyncMetrics | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config
        self.state = state or ConnectionState(max_attempts=config.max_reconnect_attempts)
        self.state.max_attempts = config.max_reconnect_attempts
        self._scheduler = scheduler
        self._store = store
        self._channel_factory = channel_factory
        self._is_expired = is_expired or (lambda: False)
        self._headers = dict(headers or {})
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_update = on_update
        self._on_exhausted = on_exhausted
        self._logger = logger or NullEventLogger()
        self._metrics = metrics
        self._session_id = session_id

        self._order_no: str | None = None
        self._token: str | None = None
        self._channel: PushChannel | None = None
        self._reconnect_timer: TimerHandle | None = None
        self._generation = 0
        self._active_generation: int | None = None
        self._opened = False
        self.reconnect_delays: list[float] = []

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None and self._reconnect_timer.active

    def open(self, order_no: str, token: str) -> None:
        """Start connecting; outcomes arrive as connected/disconnected events."""
        if self._opened:
            return
        self._order_no = str(order_no)
        self._token = str(token)
        self._opened = True
        self.state.reconnect_attempts = 0
        self.state.exhausted = False
        self._connect()

    def close(self) -> None:
        """Tear the channel down and cancel any pending reconnect."""
        self._opened = False
        cancel_handle(self._reconnect_timer)
        self._reconnect_timer = None
        self._active_generation = None
        channel = self._channel
        self._channel = None
        if self.state.channel == "push":
            self.state.channel = "none"
        self.state.push_connected = False
        if channel is not None:
            self._close_channel(channel)

    def _connect(self) -> None:
        self._reconnect_timer = None
        if not self._opened:
            return
        if self._is_expired():
            self._logger.emit(
                level="info",
                event="push_connect_skipped",
                session_id=self._session_id,
                reason="expired",
            )
            return

        order_no, token = self._order_no, self._token
        if order_no is None or token is None:
            msg = "ConnectionManager.open() must be called before connecting."
            raise RuntimeError(msg)
        self._generation += 1
        generation = self._generation
        self._active_generation = generation
        url = self.config.url_for(order_no, token)
        self._logger.emit(
            level="info",
            event="push_connecting",
            session_id=self._session_id,
            url=redact_url_token(url),
            attempt=self.state.reconnect_attempts,
        )
        try:
            channel = self._channel_factory(
                url=url,
                headers=dict(self._headers),
                on_open=lambda: self._handle_open(generation),
                on_message=lambda raw: self._handle_message(generation, raw),
                on_close=lambda reason: self._handle_close(generation, reason),
            )
        except Exception as error:
            self._logger.emit(
                level="warning",
                event="push_connect_failed",
                session_id=self._session_id,
                error_type=type(error).__name__,
                error=str(error),
            )
            self._handle_close(generation, str(error))
            return

        if self._active_generation != generation:
            self._close_channel(channel)
            return
        self._channel = channel

    def _handle_open(self, generation: int) -> None:
        if generation != self._active_generation:
            return
        self.state.push_connected = True
        self.state.channel = "push"
        self.state.reconnect_attempts = 0
        self.state.exhausted = False
        self.reconnect_delays.clear()
        self._logger.emit(level="info", event="push_connected", session_id=self._session_id)
        if self._on_connected is not None:
            self._on_connected()

    def _handle_message(self, generation: int, raw_message: str | bytes) -> None:
        if generation != self._active_generation:
            return
        try:
            snapshot = decode_push_frame(raw_message, order_no=self._order_no)
        except MalformedMessageError as error:
            if self._metrics is not None:
                self._metrics.record_push_message(discarded=True)
            self._logger.emit(
                level="debug",
                event="push_message_discarded",
                session_id=self._session_id,
                reason=str(error),
            )
            return

        if self._metrics is not None:
            self._metrics.record_push_message()
        self._store.merge(snapshot, source="push")
        if self._on_update is not None:
            self._on_update(snapshot)

    def _handle_close(self, generation: int, reason: str | None) -> None:
        if generation != self._active_generation:
            return
        self._active_generation = None
        channel = self._channel
        self._channel = None
        if channel is not None:
            self._close_channel(channel)
        self.state.push_connected = False
        if self.state.channel == "push":
            self.state.channel = "none"

        self._logger.emit(
            level="warning",
            event="push_disconnected",
            session_id=self._session_id,
            reason=reason,
            attempts=self.state.reconnect_attempts,
        )
        if self._on_disconnected is not None:
            self._on_disconnected(reason)

        if not self._opened or self._is_expired():
            return
        if self.state.reconnect_attempts < self.state.max_attempts:
            delay_seconds = self.config.backoff_for(self.state.reconnect_attempts)
            self.state.reconnect_attempts += 1
            self.reconnect_delays.append(delay_seconds)
            if self._metrics is not None:
                self._metrics.record_reconnect()
            self._logger.emit(
                level="info",
                event="push_reconnect_scheduled",
                session_id=self._session_id,
                delay_seconds=delay_seconds,
                attempt=self.state.reconnect_attempts,
            )
            cancel_handle(self._reconnect_timer)
            self._reconnect_timer = self._scheduler.call_later(delay_seconds, self._connect)
            return

        if self.state.exhausted:
            return
        self.state.exhausted = True
        self._logger.emit(
            level="warning",
            event="push_exhausted",
            session_id=self._session_id,
            attempts=self.state.reconnect_attempts,
        )
        if self._on_exhausted is not None:
            self._on_exhausted()

    def _close_channel(self, channel: PushChannel) -> None:
        try:
            channel.close()
        except Exception as error:
            self._logger.emit(
                level="debug",
                event="push_close_failed",
                session_id=self._session_id,
                error=str(error),
            )


def _looks_like_timeout(error: Exception, timeout_types: tuple[type[BaseException], ...]) -> bool:
    if isinstance(error, (TimeoutError, *timeout_types)):
        return True
    return "timed out" in str(error).lower()


class WebSocketPushChannel:
    """`websocket-client` connection read on a daemon thread.

    Every lifecycle event is handed to the session scheduler with `call_soon`,
    so the manager's callbacks always run on the session thread.
    """

    def __init__(
        self,
        *,
        url: str,
        headers: dict[str, str],
        on_open: Callable[[], None],
        on_message: Callable[[str | bytes], None],
        on_close: Callable[[str | None], None],
        scheduler: Scheduler,
        timeout_seconds: float,
        websocket_module: Any,
    ) -> None:
        self.url = url
        self._headers = headers
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._scheduler = scheduler
        self._timeout_seconds = float(timeout_seconds)
        self._websocket = websocket_module
        self._stop_event = threading.Event()
        self._connection_lock = threading.Lock()
        self._connection: Any = None
        self._thread = threading.Thread(
            target=self._run,
            name="ordersync-push",
            daemon=True,
        )
        self._thread.start()

    def close(self) -> None:
        self._stop_event.set()
        with self._connection_lock:
            connection = self._connection
            self._connection = None
        if connection is not None:
            try:
                connection.close()
            except Exception:
                pass

    def _run(self) -> None:
        header_lines = [f"{name}: {value}" for name, value in self._headers.items()]
        timeout_types: tuple[type[BaseException], ...] = ()
        timeout_exception = getattr(self._websocket, "WebSocketTimeoutException", None)
        if isinstance(timeout_exception, type):
            timeout_types = (timeout_exception,)
        try:
            connection = self._websocket.create_connection(
                self.url,
                header=header_lines,
                timeout=self._timeout_seconds,
            )
            with self._connection_lock:
                if self._stop_event.is_set():
                    connection.close()
                    return
                self._connection = connection
            self._scheduler.call_soon(self._on_open)

            while not self._stop_event.is_set():
                try:
                    raw_message = connection.recv()
                except Exception as receive_error:
                    if _looks_like_timeout(receive_error, timeout_types):
                        continue
                    raise
                if raw_message in {"", b"", None}:
                    msg = "WebSocket returned empty payload."
                    raise RuntimeError(msg)
                self._scheduler.call_soon(lambda message=raw_message: self._on_message(message))
        except Exception as error:
            if not self._stop_event.is_set():
                reason = str(error) or type(error).__name__
                self._scheduler.call_soon(lambda: self._on_close(reason))
        finally:
            self.close()


def websocket_channel_factory(
    scheduler: Scheduler,
    *,
    timeout_seconds: float = 10.0,
) -> PushChannelFactory:
    """Build the default push factory on top of `websocket-client`."""

    def _factory(
        url: str,
        headers: dict[str, str],
        on_open: Callable[[], None],
        on_message: Callable[[str | bytes], None],
        on_close: Callable[[str | None], None],
    ) -> PushChannel:
        try:
            import websocket  # type: ignore[import-not-found]
        except ImportError as error:
            msg = "Push updates require the `websocket-client` package."
            raise RuntimeError(msg) from error

        return WebSocketPushChannel(
            url=url,
            headers=headers,
            on_open=on_open,
            on_message=on_message,
            on_close=on_close,
            scheduler=scheduler,
            timeout_seconds=timeout_seconds,
            websocket_module=websocket,
        )

    return _factory
