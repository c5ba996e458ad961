"""Fetch, push and poll transports for order tracking."""

from ordersync.connectors.api import OrderApiClient
from ordersync.connectors.base import (
    HttpResponse,
    HttpTransport,
    MalformedMessageError,
    PushChannel,
    PushChannelFactory,
    TrackingCredentialError,
    TrackingError,
    TrackingWindowClosedError,
    TransientNetworkError,
)
from ordersync.connectors.poll import PollConfig, PollScheduler
from ordersync.connectors.push import (
    ConnectionManager,
    ConnectionState,
    PushConfig,
    websocket_channel_factory,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "HttpResponse",
    "HttpTransport",
    "MalformedMessageError",
    "OrderApiClient",
    "PollConfig",
    "PollScheduler",
    "PushChannel",
    "PushChannelFactory",
    "PushConfig",
    "TrackingCredentialError",
    "TrackingError",
    "TrackingWindowClosedError",
    "TransientNetworkError",
    "websocket_channel_factory",
]
