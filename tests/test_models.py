from __future__ import annotations

import pandas as pd
import pytest

from ordersync.core.models import (
    MalformedOrderPayloadError,
    normalize_status,
    normalize_timestamp,
    order_from_wire,
    snapshot_from_response,
)


def test_snapshot_from_wrapped_response_reads_order_and_last_payment() -> None:
    snapshot = snapshot_from_response(
        {
            "order": {
                "order_no": "ORD-001",
                "status": "Preparing",
                "type": "delivery",
                "customer_name": "Sari",
                "grand_total": "45000",
                "updated_at": "2026-01-05T10:00:00Z",
                "items": [
                    {
                        "product_name_snapshot": "Nasi Goreng",
                        "quantity": 2,
                        "subtotal": 40000,
                        "modifiers": [{"modifier_name_snapshot": "Pedas"}],
                    }
                ],
            },
            "last_payment": {"method": "QRIS", "status": "verified"},
        }
    )

    assert snapshot.order_no == "ORD-001"
    assert snapshot.status == "preparing"
    assert snapshot.fulfillment_type == "delivery"
    assert snapshot.payment_method == "qris"
    assert snapshot.payment is not None
    assert snapshot.payment.status == "verified"
    assert snapshot.grand_total == 45000.0
    assert snapshot.items[0].name == "Nasi Goreng"
    assert snapshot.items[0].modifiers == ("Pedas",)
    assert snapshot.updated_at == pd.Timestamp("2026-01-05T10:00:00Z")
    assert not snapshot.is_terminal


def test_bare_order_uses_order_payment_method_and_default_order_no() -> None:
    snapshot = snapshot_from_response(
        {"status": "completed", "fulfillment_type": "dine-in", "payment_method": "cash"},
        default_order_no="ORD-9",
    )

    assert snapshot.order_no == "ORD-9"
    assert snapshot.fulfillment_type == "dine_in"
    assert snapshot.payment_method == "cash"
    assert snapshot.is_terminal
    assert snapshot.is_terminal_success


def test_unknown_fulfillment_falls_back_to_pickup() -> None:
    snapshot = order_from_wire({"order_no": "A", "status": "ready", "type": "drone"})
    assert snapshot.fulfillment_type == "pickup"


def test_raw_payload_does_not_affect_equality() -> None:
    first = order_from_wire({"order_no": "A", "status": "ready", "extra": 1})
    second = order_from_wire({"order_no": "A", "status": "ready", "extra": 2})
    assert first == second


def test_normalize_status_aliases() -> None:
    assert normalize_status(" Cancelled ") == "canceled"
    assert normalize_status("rejected") == "canceled"
    assert normalize_status("WAITING_PICKUP") == "waiting_pickup"
    assert normalize_status("mystery") == "mystery"


def test_normalize_timestamp_converts_to_utc() -> None:
    assert normalize_timestamp(None) is None
    assert normalize_timestamp("") is None
    converted = normalize_timestamp("2026-01-05T17:00:00+07:00")
    assert converted == pd.Timestamp("2026-01-05T10:00:00Z")
    assert str(converted.tz) == "UTC"


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"status": "pending"},
        {"order_no": "A"},
        {"order_no": "A", "status": "pending", "items": "not-a-list"},
        {"order_no": "A", "status": "pending", "grand_total": float("nan")},
        {"order_no": "A", "status": "pending", "discount_amount": float("-inf")},
        {"order_no": "A", "status": "pending", "items": [{"name": "x", "quantity": float("inf")}]},
        {"order_no": "A", "status": "pending", "items": [{"name": "x", "subtotal": "1e400"}]},
    ],
)
def test_malformed_payloads_raise(payload: object) -> None:
    with pytest.raises(MalformedOrderPayloadError):
        snapshot_from_response(payload)


def test_unparsable_numbers_fall_back_to_defaults() -> None:
    snapshot = order_from_wire(
        {
            "order_no": "A",
            "status": "ready",
            "grand_total": "n/a",
            "items": [{"name": "Kopi", "quantity": "two", "subtotal": None}],
        }
    )
    assert snapshot.grand_total == 0.0
    assert snapshot.items[0].quantity == 1
    assert snapshot.items[0].subtotal == 0.0
    assert snapshot == order_from_wire(dict(snapshot.raw))
