"""REST client for the public fetch-order endpoint."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from ordersync.connectors.base import (
    HttpResponse,
    HttpTransport,
    TrackingCredentialError,
    TrackingError,
    TrackingWindowClosedError,
    TransientNetworkError,
    default_http_transport,
)
from ordersync.core.models import MalformedOrderPayloadError, OrderSnapshot, snapshot_from_response

_TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}
_CREDENTIAL_STATUS_CODES = {400, 401, 403, 404}
_WINDOW_CLOSED_MARKERS = ("no longer available", "completed", "expired")


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message", "detail", "raw"):
            value = payload.get(key)
            if value:
                return str(value)
    return ""


class OrderApiClient:
    """Fetch one order by `(order_no, token)`.

    The call is a single idempotent GET with no internal retry; retry cadence
    belongs to the caller's schedule. Outcomes map onto the tracking error
    taxonomy so callers can tell a wrong credential from an outage.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 10.0,
        orders_path: str = "/public/orders",
        static_headers: dict[str, str] | None = None,
        http_transport: HttpTransport | None = None,
    ) -> None:
        if not str(base_url).strip():
            msg = "base_url must be non-empty."
            raise ValueError(msg)
        if timeout_seconds <= 0:
            msg = "timeout_seconds must be positive."
            raise ValueError(msg)

        self.base_url = str(base_url).rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.orders_path = "/" + str(orders_path).strip("/")
        self.static_headers = dict(static_headers or {})
        self._http_transport = http_transport or default_http_transport

    def order_url(self, order_no: str, token: str) -> str:
        return (
            f"{self.base_url}{self.orders_path}/{quote(str(order_no), safe='')}"
            f"?token={quote(str(token), safe='')}"
        )

    def fetch_order(self, order_no: str, token: str) -> OrderSnapshot:
        """Fetch and parse the current order snapshot, raising a `TrackingError` on failure."""
        url = self.order_url(order_no, token)
        headers = {"Accept": "application/json"}
        headers.update(self.static_headers)
        try:
            response = self._http_transport(
                method="GET",
                url=url,
                headers=headers,
                payload=None,
                timeout_seconds=self.timeout_seconds,
            )
        except TrackingError:
            raise
        except Exception as error:
            msg = f"GET order {order_no!r} failed: {error}"
            raise TransientNetworkError(msg) from error

        return self._snapshot_from_response(response, order_no)

    def _snapshot_from_response(self, response: HttpResponse, order_no: str) -> OrderSnapshot:
        status_code = int(response.status_code)
        if 200 <= status_code < 300:
            try:
                return snapshot_from_response(response.payload, default_order_no=order_no)
            except MalformedOrderPayloadError as error:
                msg = f"Order {order_no!r} response could not be parsed: {error}"
                raise TransientNetworkError(msg, status_code=status_code) from error

        error_text = _error_message(response.payload)
        lowered = error_text.lower()
        if status_code == 410 or any(marker in lowered for marker in _WINDOW_CLOSED_MARKERS):
            msg = f"Tracking for order {order_no!r} is closed (status={status_code}): {error_text}"
            raise TrackingWindowClosedError(msg, status_code=status_code)
        if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
            msg = f"Order {order_no!r} fetch failed with status={status_code}: {error_text}"
            raise TransientNetworkError(msg, status_code=status_code)
        if status_code in _CREDENTIAL_STATUS_CODES or 400 <= status_code < 500:
            msg = f"Order {order_no!r} not visible with the given token (status={status_code})."
            raise TrackingCredentialError(msg, status_code=status_code)

        msg = f"Unexpected status={status_code} fetching order {order_no!r}."
        raise TransientNetworkError(msg, status_code=status_code)
