from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from ordersync.connectors.api import OrderApiClient
from ordersync.connectors.base import (
    HttpResponse,
    TrackingCredentialError,
    TrackingWindowClosedError,
    TransientNetworkError,
)


@dataclass(slots=True)
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    timeout_seconds: float


class ScriptedTransport:
    def __init__(self, responses: list[HttpResponse | Exception]) -> None:
        self._responses = list(responses)
        self.requests: list[RecordedRequest] = []

    def __call__(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any] | None,
        timeout_seconds: float,
    ) -> HttpResponse:
        del payload
        self.requests.append(RecordedRequest(method, url, dict(headers), timeout_seconds))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(transport: ScriptedTransport) -> OrderApiClient:
    return OrderApiClient(
        base_url="https://api.example/api/",
        timeout_seconds=4.0,
        http_transport=transport,
    )


def test_fetch_order_builds_url_and_parses_snapshot() -> None:
    transport = ScriptedTransport(
        [
            HttpResponse(
                status_code=200,
                payload={
                    "order": {"order_no": "ORD/7", "status": "ready", "type": "pickup"},
                    "last_payment": None,
                },
                headers={},
            )
        ]
    )

    snapshot = _client(transport).fetch_order("ORD/7", "t&k")

    assert snapshot.order_no == "ORD/7"
    assert snapshot.status == "ready"
    request = transport.requests[0]
    assert request.method == "GET"
    assert request.url == "https://api.example/api/public/orders/ORD%2F7?token=t%26k"
    assert request.headers["Accept"] == "application/json"
    assert request.timeout_seconds == 4.0


@pytest.mark.parametrize("status_code", [401, 403, 404, 422])
def test_client_errors_map_to_credential_error(status_code: int) -> None:
    transport = ScriptedTransport(
        [HttpResponse(status_code=status_code, payload={"error": "Order not found"}, headers={})]
    )

    with pytest.raises(TrackingCredentialError) as error_info:
        _client(transport).fetch_order("A", "bad")

    assert error_info.value.status_code == status_code
    assert "tidak ditemukan" in error_info.value.user_message


@pytest.mark.parametrize(
    ("status_code", "message"),
    [
        (410, ""),
        (403, "Tracking is no longer available for this order"),
        (404, "Order already completed"),
        (400, "Tracking link expired"),
    ],
)
def test_window_closed_mapping(status_code: int, message: str) -> None:
    transport = ScriptedTransport(
        [HttpResponse(status_code=status_code, payload={"message": message}, headers={})]
    )

    with pytest.raises(TrackingWindowClosedError) as error_info:
        _client(transport).fetch_order("A", "tok")

    assert "sudah selesai" in error_info.value.user_message


@pytest.mark.parametrize("status_code", [408, 429, 500, 503])
def test_retryable_statuses_map_to_transient_error(status_code: int) -> None:
    transport = ScriptedTransport(
        [HttpResponse(status_code=status_code, payload={}, headers={})]
    )

    with pytest.raises(TransientNetworkError):
        _client(transport).fetch_order("A", "tok")


def test_transport_exception_and_malformed_body_are_transient() -> None:
    transport = ScriptedTransport(
        [
            ConnectionError("connection refused"),
            HttpResponse(status_code=200, payload={"raw": "<html>"}, headers={}),
        ]
    )
    client = _client(transport)

    with pytest.raises(TransientNetworkError, match="connection refused"):
        client.fetch_order("A", "tok")
    with pytest.raises(TransientNetworkError, match="could not be parsed"):
        client.fetch_order("A", "tok")


def test_client_validates_configuration() -> None:
    with pytest.raises(ValueError, match="base_url"):
        OrderApiClient(base_url=" ")
    with pytest.raises(ValueError, match="timeout_seconds"):
        OrderApiClient(base_url="https://api.example", timeout_seconds=0)
