"""TOML configuration for order tracking."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ordersync.connectors.poll import DEFAULT_POLL_INTERVALS, PollConfig
from ordersync.connectors.push import PushConfig
from ordersync.core.expiry import ExpiryConfig

DEFAULT_PUSH_PATH = "/public/orders/{order_no}/ws?token={token}"


@dataclass(slots=True)
class TrackingConfig:
    """Typed configuration for one tracking deployment."""

    api_base_url: str
    ws_base_url: str | None = None
    push_enabled: bool = True
    request_timeout_seconds: float = 10.0
    orders_path: str = "/public/orders"
    push_url_template: str | None = None
    log_path: Path | None = None
    push: dict[str, float] = field(default_factory=dict)
    poll: PollConfig = field(default_factory=PollConfig)
    expiry: ExpiryConfig = field(default_factory=ExpiryConfig)

    def __post_init__(self) -> None:
        self.api_base_url = str(self.api_base_url).strip().rstrip("/")
        if not self.api_base_url:
            msg = "api_base_url must be non-empty."
            raise ValueError(msg)
        if self.ws_base_url is not None:
            self.ws_base_url = str(self.ws_base_url).strip().rstrip("/") or None
        if self.request_timeout_seconds <= 0:
            msg = "request_timeout_seconds must be positive."
            raise ValueError(msg)
        # Validates the push table eagerly.
        self.push_config()

    def resolved_push_url_template(self) -> str | None:
        if not self.push_enabled:
            return None
        if self.push_url_template:
            return self.push_url_template
        if self.ws_base_url is None:
            return None
        return f"{self.ws_base_url}{DEFAULT_PUSH_PATH}"

    def push_config(self) -> PushConfig:
        return PushConfig(
            url_template=self.resolved_push_url_template(),
            grace_seconds=float(self.push.get("grace_seconds", 5.0)),
            reconnect_base_seconds=float(self.push.get("reconnect_base_seconds", 5.0)),
            reconnect_cap_seconds=float(self.push.get("reconnect_cap_seconds", 30.0)),
            max_reconnect_attempts=int(self.push.get("max_reconnect_attempts", 3)),
            connect_timeout_seconds=float(
                self.push.get("connect_timeout_seconds", self.request_timeout_seconds)
            ),
        )


def load_tracking_config(config_path: str | Path) -> TrackingConfig:
    """Read a tracking config file; relative paths resolve against its directory."""
    config_path = Path(config_path)
    if not config_path.exists():
        msg = f"Config file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open("rb") as config_file:
        raw_config = tomllib.load(config_file)

    if "api_base_url" not in raw_config:
        msg = "config is missing required key: api_base_url"
        raise ValueError(msg)

    base_dir = config_path.parent
    log_path_raw = _as_optional_string(raw_config.get("log_path"))
    log_path = _resolve_path(base_dir, log_path_raw) if log_path_raw else None

    push_raw = _as_table(raw_config, "push")
    poll_raw = _as_table(raw_config, "poll")
    expiry_raw = _as_table(raw_config, "expiry")

    intervals_raw = poll_raw.get("intervals", {})
    if not isinstance(intervals_raw, dict):
        msg = "`poll.intervals` must be a TOML table."
        raise ValueError(msg)
    intervals = dict(DEFAULT_POLL_INTERVALS)
    intervals.update({str(status): float(seconds) for status, seconds in intervals_raw.items()})

    poll_config = PollConfig(
        intervals=intervals,
        default_interval_seconds=float(poll_raw.get("default_interval_seconds", 60.0)),
        failure_retry_seconds=float(poll_raw.get("failure_retry_seconds", 30.0)),
    )
    expiry_config = ExpiryConfig(
        window_seconds=float(expiry_raw.get("window_seconds", 300.0)),
        final_refetch_at_seconds=int(expiry_raw.get("final_refetch_at_seconds", 1)),
    )

    return TrackingConfig(
        api_base_url=str(raw_config["api_base_url"]),
        ws_base_url=_as_optional_string(raw_config.get("ws_base_url")),
        push_enabled=bool(raw_config.get("push_enabled", True)),
        request_timeout_seconds=float(raw_config.get("request_timeout_seconds", 10.0)),
        orders_path=str(raw_config.get("orders_path", "/public/orders")),
        push_url_template=_as_optional_string(push_raw.get("url_template")),
        log_path=log_path,
        push={key: value for key, value in push_raw.items() if key != "url_template"},
        poll=poll_config,
        expiry=expiry_config,
    )


def _as_table(raw_config: dict[str, Any], key: str) -> dict[str, Any]:
    table = raw_config.get(key, {})
    if not isinstance(table, dict):
        msg = f"`{key}` must be a TOML table."
        raise ValueError(msg)
    return table


def _as_optional_string(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _resolve_path(base_dir: Path, raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (base_dir / candidate).resolve()
