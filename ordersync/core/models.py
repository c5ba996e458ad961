"""Order snapshot data model and wire-format parsing."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal

import pandas as pd

OrderStatus = Literal[
    "pending",
    "confirmed",
    "preparing",
    "ready",
    "delivering",
    "delivered",
    "waiting_pickup",
    "picked_up",
    "completed",
    "canceled",
]
FulfillmentType = Literal["delivery", "dine_in", "pickup"]
PaymentStatus = Literal["pending", "verified", "rejected"]

KNOWN_STATUSES: frozenset[str] = frozenset(
    {
        "pending",
        "confirmed",
        "preparing",
        "ready",
        "delivering",
        "delivered",
        "waiting_pickup",
        "picked_up",
        "completed",
        "canceled",
    }
)
TERMINAL_SUCCESS_STATUSES: frozenset[str] = frozenset({"completed", "delivered", "picked_up"})
TERMINAL_STATUSES: frozenset[str] = TERMINAL_SUCCESS_STATUSES | {"canceled"}

_CANCELED_ALIASES = {"canceled", "cancelled", "rejected"}
_FULFILLMENT_ALIASES: dict[str, FulfillmentType] = {
    "delivery": "delivery",
    "dine_in": "dine_in",
    "dine-in": "dine_in",
    "dinein": "dine_in",
    "pickup": "pickup",
    "pick_up": "pickup",
    "takeaway": "pickup",
}


class MalformedOrderPayloadError(ValueError):
    """Raised when a wire payload cannot be turned into an order snapshot."""


def utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC")


def normalize_timestamp(value: Any) -> pd.Timestamp | None:
    """Parse an optional wire timestamp into a UTC pandas timestamp."""
    if value is None or value == "":
        return None
    try:
        parsed = pd.Timestamp(value)
    except (TypeError, ValueError) as error:
        msg = f"Unparsable timestamp: {value!r}"
        raise MalformedOrderPayloadError(msg) from error
    if parsed is pd.NaT:
        return None
    if parsed.tzinfo is None:
        return parsed.tz_localize("UTC")
    return parsed.tz_convert("UTC")


def normalize_status(value: Any) -> str:
    """Lower-case a backend status and fold cancel spellings into `canceled`."""
    normalized = str(value or "").strip().lower()
    if normalized in _CANCELED_ALIASES:
        return "canceled"
    return normalized


def normalize_fulfillment_type(value: Any) -> FulfillmentType:
    normalized = str(value or "").strip().lower()
    return _FULFILLMENT_ALIASES.get(normalized, "pickup")


def is_terminal_status(status: str | None) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES


def is_terminal_success_status(status: str | None) -> bool:
    return normalize_status(status) in TERMINAL_SUCCESS_STATUSES


def _first_present(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(number):
        msg = f"Non-finite number in order payload: {value!r}"
        raise MalformedOrderPayloadError(msg)
    return number


@dataclass(slots=True, frozen=True)
class PaymentInfo:
    """Most recent payment verification attempt attached to an order."""

    method: str
    status: str = "pending"


@dataclass(slots=True, frozen=True)
class OrderItem:
    """Display-only order line."""

    name: str
    quantity: int
    modifiers: tuple[str, ...] = ()
    subtotal: float = 0.0


@dataclass(slots=True, frozen=True)
class OrderSnapshot:
    """Authoritative view of one order at a point in time."""

    order_no: str
    status: str
    fulfillment_type: FulfillmentType
    payment: PaymentInfo | None = None
    items: tuple[OrderItem, ...] = ()
    customer_name: str | None = None
    grand_total: float = 0.0
    discount_amount: float = 0.0
    notes: str | None = None
    created_at: pd.Timestamp | None = None
    updated_at: pd.Timestamp | None = None
    completed_at: pd.Timestamp | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def payment_method(self) -> str | None:
        return None if self.payment is None else self.payment.method

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_terminal_success(self) -> bool:
        return self.status in TERMINAL_SUCCESS_STATUSES

    @property
    def items_subtotal(self) -> float:
        return float(sum(item.subtotal for item in self.items))


def _payment_from_wire(
    order_payload: dict[str, Any],
    payment_payload: Any,
) -> PaymentInfo | None:
    if isinstance(payment_payload, dict):
        method_value = _first_present(payment_payload, ("method", "payment_method"))
        if method_value is None:
            method_value = order_payload.get("payment_method")
        status_value = _first_present(payment_payload, ("status", "payment_status"))
        if method_value is None:
            return None
        return PaymentInfo(
            method=str(method_value).strip().lower(),
            status=str(status_value or "pending").strip().lower(),
        )

    method_value = order_payload.get("payment_method")
    if method_value is None:
        return None
    status_value = order_payload.get("payment_status")
    return PaymentInfo(
        method=str(method_value).strip().lower(),
        status=str(status_value or "pending").strip().lower(),
    )


def _item_from_wire(payload: dict[str, Any]) -> OrderItem:
    name_value = _first_present(payload, ("name", "product_name_snapshot", "product_name"))
    modifiers_raw = payload.get("modifiers") or []
    modifier_names: list[str] = []
    if isinstance(modifiers_raw, list):
        for modifier in modifiers_raw:
            if isinstance(modifier, dict):
                label = _first_present(modifier, ("modifier_name_snapshot", "name"))
                if label is not None:
                    modifier_names.append(str(label))
            elif modifier is not None:
                modifier_names.append(str(modifier))
    return OrderItem(
        name=str(name_value or ""),
        quantity=int(_as_float(_first_present(payload, ("quantity", "qty")), 1.0)),
        modifiers=tuple(modifier_names),
        subtotal=_as_float(payload.get("subtotal"), 0.0),
    )


def extract_order_payload(payload: Any) -> tuple[dict[str, Any], Any]:
    """Split a fetch response into its order node and optional payment node."""
    if not isinstance(payload, dict):
        msg = f"Order payload must be a JSON object, got {type(payload).__name__}."
        raise MalformedOrderPayloadError(msg)
    if isinstance(payload.get("order"), dict):
        return payload["order"], payload.get("last_payment")
    data_node = payload.get("data")
    if isinstance(data_node, dict) and isinstance(data_node.get("order"), dict):
        return data_node["order"], data_node.get("last_payment")
    return payload, payload.get("payment") or payload.get("last_payment")


def order_from_wire(
    payload: dict[str, Any],
    payment_payload: Any = None,
    *,
    default_order_no: str | None = None,
) -> OrderSnapshot:
    """Build an `OrderSnapshot` from one backend order object."""
    if not isinstance(payload, dict):
        msg = f"Order payload must be a JSON object: {payload!r}"
        raise MalformedOrderPayloadError(msg)

    order_no_value = _first_present(payload, ("order_no", "orderNo", "order_number"))
    if order_no_value is None:
        order_no_value = default_order_no
    if order_no_value is None or not str(order_no_value).strip():
        msg = f"Order payload missing order_no: {payload!r}"
        raise MalformedOrderPayloadError(msg)

    status_raw = _first_present(payload, ("status", "order_status"))
    if status_raw is None:
        msg = f"Order payload missing status: {payload!r}"
        raise MalformedOrderPayloadError(msg)

    items_raw = payload.get("items") or []
    if not isinstance(items_raw, list):
        msg = "Order payload `items` must be a list."
        raise MalformedOrderPayloadError(msg)

    customer_value = payload.get("customer_name")
    notes_value = payload.get("notes")
    return OrderSnapshot(
        order_no=str(order_no_value).strip(),
        status=normalize_status(status_raw),
        fulfillment_type=normalize_fulfillment_type(
            _first_present(payload, ("type", "fulfillment_type", "order_type"))
        ),
        payment=_payment_from_wire(payload, payment_payload),
        items=tuple(_item_from_wire(item) for item in items_raw if isinstance(item, dict)),
        customer_name=None if customer_value is None else str(customer_value),
        grand_total=_as_float(payload.get("grand_total"), 0.0),
        discount_amount=_as_float(payload.get("discount_amount"), 0.0),
        notes=None if notes_value is None else str(notes_value),
        created_at=normalize_timestamp(payload.get("created_at")),
        updated_at=normalize_timestamp(payload.get("updated_at")),
        completed_at=normalize_timestamp(payload.get("completed_at")),
        raw=dict(payload),
    )


def snapshot_from_response(payload: Any, *, default_order_no: str | None = None) -> OrderSnapshot:
    """Parse a full fetch response (`{order, last_payment}` or a bare order)."""
    order_payload, payment_payload = extract_order_payload(payload)
    return order_from_wire(
        order_payload,
        payment_payload,
        default_order_no=default_order_no,
    )
