"""Transport protocols and the tracking error taxonomy."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

TransportState = Literal["live-push", "adaptive-poll", "none"]

ORDER_NOT_FOUND_MESSAGE = (
    "Pesanan tidak ditemukan. Periksa kembali nomor pesanan dan token Anda."
)
TRACKING_CLOSED_MESSAGE = (
    "✅ Pesanan Anda sudah selesai!\n\n"
    "Tracking untuk pesanan ini sudah tidak tersedia karena pesanan Anda sudah "
    "selesai dan diterima.\n\n"
    "Terima kasih telah memesan! 🙏"
)
NETWORK_ERROR_MESSAGE = "Gagal memuat pesanan. Periksa koneksi Anda lalu coba lagi."


class TrackingError(RuntimeError):
    """Base error for order tracking; carries a viewer-facing message."""

    user_message = NETWORK_ERROR_MESSAGE

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        user_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        if user_message is not None:
            self.user_message = user_message


class TransientNetworkError(TrackingError):
    """Fetch or channel failure that is retried on schedule."""


class TrackingCredentialError(TrackingError):
    """Order number and token do not identify a visible order. Never retried."""

    user_message = ORDER_NOT_FOUND_MESSAGE


class TrackingWindowClosedError(TrackingError):
    """Server reports that tracking for this order is no longer available."""

    user_message = TRACKING_CLOSED_MESSAGE


class MalformedMessageError(ValueError):
    """Push frame that is not a well-formed `order_update` event."""


@dataclass(slots=True, frozen=True)
class HttpResponse:
    status_code: int
    payload: Any
    headers: dict[str, str]


class HttpTransport(Protocol):
    """Protocol for injectable REST transport."""

    def __call__(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any] | None,
        timeout_seconds: float,
    ) -> HttpResponse: ...


class PushChannel(Protocol):
    """Open push connection; closing it must be idempotent."""

    def close(self) -> None: ...


class PushChannelFactory(Protocol):
    """Create a push channel that reports its lifecycle through callbacks.

    Implementations may invoke the callbacks from any thread as long as they
    marshal them through the session scheduler first.
    """

    def __call__(
        self,
        url: str,
        headers: dict[str, str],
        on_open: Callable[[], None],
        on_message: Callable[[str | bytes], None],
        on_close: Callable[[str | None], None],
    ) -> PushChannel: ...


def _decode_body(raw_body: str) -> Any:
    if not raw_body:
        return {}
    try:
        return json.loads(raw_body)
    except json.JSONDecodeError:
        return {"raw": raw_body}


def default_http_transport(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout_seconds: float,
) -> HttpResponse:
    body: bytes | None = None
    if payload is not None:
        body = json.dumps(payload).encode("utf-8")

    request_obj = urllib_request.Request(url=url, data=body, method=method.upper())
    for header_name, header_value in headers.items():
        request_obj.add_header(header_name, header_value)

    try:
        with urllib_request.urlopen(request_obj, timeout=timeout_seconds) as response:
            raw_body = response.read().decode("utf-8").strip()
            return HttpResponse(
                status_code=int(response.status),
                payload=_decode_body(raw_body),
                headers={key.lower(): value for key, value in response.headers.items()},
            )
    except urllib_error.HTTPError as http_error:
        raw_body = http_error.read().decode("utf-8").strip()
        header_items = http_error.headers.items() if http_error.headers is not None else []
        return HttpResponse(
            status_code=int(http_error.code),
            payload=_decode_body(raw_body),
            headers={key.lower(): value for key, value in header_items},
        )
