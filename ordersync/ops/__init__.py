"""Operational utilities for logging, metrics, and secret masking."""

from ordersync.ops.logging import EventLogger, JsonEventLogger, NullEventLogger
from ordersync.ops.metrics import SyncMetrics, SyncMetricsSnapshot
from ordersync.ops.secrets import (
    is_ci_environment,
    mask_secret,
    read_secret_env,
    redact_url_token,
    sanitize_logging_payload,
)

__all__ = [
    "EventLogger",
    "JsonEventLogger",
    "NullEventLogger",
    "SyncMetrics",
    "SyncMetricsSnapshot",
    "is_ci_environment",
    "mask_secret",
    "read_secret_env",
    "redact_url_token",
    "sanitize_logging_payload",
]
