"""Order models, status timelines, snapshot store, expiry and scheduling."""

from ordersync.core.expiry import ExpiryConfig, ExpiryGuard, ExpiryState
from ordersync.core.models import (
    MalformedOrderPayloadError,
    OrderItem,
    OrderSnapshot,
    PaymentInfo,
    normalize_status,
    order_from_wire,
    snapshot_from_response,
)
from ordersync.core.scheduling import RealTimeScheduler, Scheduler, TimerHandle, VirtualScheduler
from ordersync.core.store import OrderSnapshotStore
from ordersync.core.timeline import (
    TimelineStep,
    TimelineView,
    build_timeline_view,
    current_step_index,
    timeline_for,
)

__all__ = [
    "ExpiryConfig",
    "ExpiryGuard",
    "ExpiryState",
    "MalformedOrderPayloadError",
    "OrderItem",
    "OrderSnapshot",
    "OrderSnapshotStore",
    "PaymentInfo",
    "RealTimeScheduler",
    "Scheduler",
    "TimelineStep",
    "TimelineView",
    "TimerHandle",
    "VirtualScheduler",
    "build_timeline_view",
    "current_step_index",
    "normalize_status",
    "order_from_wire",
    "snapshot_from_response",
    "timeline_for",
]
