"""Status normalization into ordered, user-facing progress timelines.

Three fulfillment timelines exist (delivery, dine-in, pickup; dine-in shares the
pickup steps) plus a two-step rejected timeline that preempts all of them when
the order is canceled. The payment method only changes the wording of the
`pending` and `confirmed` steps, never the order or count of steps.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ordersync.core.models import normalize_fulfillment_type, normalize_status

TimelineVariant = Literal["delivery", "pickup", "rejected"]
PaymentFlavor = Literal["qris", "cash"]


@dataclass(slots=True, frozen=True)
class TimelineStep:
    """One progress step rendered by the presentation layer."""

    status: str
    label: str
    description: str
    icon: str = ""


@dataclass(slots=True, frozen=True)
class _StepText:
    label: str
    description: str
    icon: str


_VARIANT_STEPS: dict[TimelineVariant, tuple[str, ...]] = {
    "delivery": (
        "pending",
        "confirmed",
        "preparing",
        "ready",
        "delivering",
        "delivered",
        "completed",
    ),
    "pickup": (
        "pending",
        "confirmed",
        "preparing",
        "ready",
        "waiting_pickup",
        "picked_up",
        "completed",
    ),
    "rejected": ("pending", "canceled"),
}

_COMPLETED_TEXT = _StepText("Terselesaikan", "Pesanan selesai. Terima kasih!", "🎉")

# Text shared by both payment flavors.
_COMMON_TEXT: dict[TimelineVariant, dict[str, _StepText]] = {
    "delivery": {
        "preparing": _StepText("Memproses Memasak", "Chef sedang memasak pesanan Anda", "🍳"),
        "ready": _StepText(
            "Masakan Sudah Siap Dikirim",
            "Pesanan sudah siap dan menunggu kurir",
            "📦",
        ),
        "delivering": _StepText(
            "Memproses Kirim Masakan",
            "Pesanan sedang dalam perjalanan",
            "🚗",
        ),
        "delivered": _StepText("Masakan Sudah Diterima", "Pesanan telah sampai di tujuan", "✓"),
        "completed": _COMPLETED_TEXT,
    },
    "pickup": {
        "preparing": _StepText(
            "Memasak Pesanan Anda",
            "Chef sedang memasak pesanan Anda dengan sepenuh hati",
            "🍳",
        ),
        "ready": _StepText(
            "Masakan Pesanan Anda Sudah Siap",
            "Pesanan Anda sudah siap untuk diambil",
            "✓",
        ),
        "waiting_pickup": _StepText(
            "Menunggu Pesanan Di Ambil",
            "Pesanan menunggu Anda untuk diambil di toko",
            "🏪",
        ),
        "picked_up": _StepText(
            "Pesanan Sudah Di Ambil",
            "Pesanan telah diambil oleh customer",
            "✓",
        ),
        "completed": _COMPLETED_TEXT,
    },
    "rejected": {},
}

# Payment-dependent wording: QRIS frames early steps as payment verification,
# cash frames them as kitchen confirmation.
_PAYMENT_TEXT: dict[tuple[TimelineVariant, PaymentFlavor], dict[str, _StepText]] = {
    ("delivery", "qris"): {
        "pending": _StepText(
            "Memproses Verifikasi Pembayaran",
            "Menunggu verifikasi bukti transfer QRIS",
            "⏳",
        ),
        "confirmed": _StepText(
            "Pembayaran Terkonfirmasi",
            "Pembayaran sudah dikonfirmasi, pesanan akan diproses",
            "✓",
        ),
    },
    ("delivery", "cash"): {
        "pending": _StepText(
            "Memproses Konfirmasi Ke Dapur",
            "Menunggu konfirmasi pembayaran",
            "⏳",
        ),
        "confirmed": _StepText(
            "Konfirmasi Diterima",
            "Pesanan diterima dapur, pesanan akan diproses",
            "✓",
        ),
    },
    ("pickup", "qris"): {
        "pending": _StepText(
            "Memproses Verifikasi Pembayaran",
            "Menunggu verifikasi bukti transfer QRIS",
            "⏳",
        ),
        "confirmed": _StepText("Pembayaran Terkonfirmasi", "Pembayaran sudah dikonfirmasi", "✓"),
    },
    ("pickup", "cash"): {
        "pending": _StepText(
            "Memproses Konfirmasi Ke Dapur",
            "Mengirim pesanan ke dapur",
            "⏳",
        ),
        "confirmed": _StepText("Konfirmasi Diterima", "Pesanan diterima dapur", "✓"),
    },
    ("rejected", "qris"): {
        "pending": _StepText(
            "Menunggu Verifikasi",
            "Bukti pembayaran sedang diperiksa",
            "⏳",
        ),
        "canceled": _StepText(
            "Pesanan Dibatalkan",
            "Pembayaran ditolak. Silakan hubungi admin untuk informasi lebih lanjut.",
            "❌",
        ),
    },
    ("rejected", "cash"): {
        "pending": _StepText("Pesanan Dibuat", "Pesanan sedang diproses", "⏳"),
        "canceled": _StepText("Pesanan Dibatalkan", "Pesanan telah dibatalkan.", "❌"),
    },
}


def payment_flavor(payment_method: str | None) -> PaymentFlavor:
    """Only QRIS gets payment-verification wording; every other method reads as cash."""
    if str(payment_method or "").strip().lower() == "qris":
        return "qris"
    return "cash"


def timeline_variant(fulfillment_type: str | None, status: str | None) -> TimelineVariant:
    if normalize_status(status) == "canceled":
        return "rejected"
    if normalize_fulfillment_type(fulfillment_type) == "delivery":
        return "delivery"
    return "pickup"


def timeline_for(
    fulfillment_type: str | None,
    payment_method: str | None,
    status: str | None,
) -> tuple[TimelineStep, ...]:
    """Return the ordered timeline steps for one order."""
    variant = timeline_variant(fulfillment_type, status)
    flavor_text = _PAYMENT_TEXT[(variant, payment_flavor(payment_method))]
    common_text = _COMMON_TEXT[variant]

    steps: list[TimelineStep] = []
    for step_status in _VARIANT_STEPS[variant]:
        text = flavor_text.get(step_status) or common_text[step_status]
        steps.append(
            TimelineStep(
                status=step_status,
                label=text.label,
                description=text.description,
                icon=text.icon,
            )
        )
    return tuple(steps)


def current_step_index(status: str | None, timeline: tuple[TimelineStep, ...]) -> int:
    """Position of the normalized status in the timeline, 0 when unknown."""
    normalized = normalize_status(status)
    for index, step in enumerate(timeline):
        if step.status == normalized:
            return index
    return 0


def desktop_progress(index: int, timeline: tuple[TimelineStep, ...]) -> float:
    """Progress-bar fraction: first step is 0, last step is 1."""
    if len(timeline) <= 1:
        return 1.0
    return index / (len(timeline) - 1)


def mobile_progress(index: int, timeline: tuple[TimelineStep, ...]) -> float:
    """Mobile percentage fraction: first step already counts as one step done."""
    if not timeline:
        return 0.0
    return (index + 1) / len(timeline)


@dataclass(slots=True, frozen=True)
class TimelineView:
    """Everything the presentation layer needs to draw the progress timeline."""

    steps: tuple[TimelineStep, ...]
    current_index: int
    is_rejected: bool

    @property
    def current_step(self) -> TimelineStep:
        return self.steps[self.current_index]

    @property
    def desktop_progress(self) -> float:
        return desktop_progress(self.current_index, self.steps)

    @property
    def mobile_progress(self) -> float:
        return mobile_progress(self.current_index, self.steps)

    @property
    def mobile_percent(self) -> int:
        return round(self.mobile_progress * 100)

    @property
    def step_caption(self) -> str:
        if self.is_rejected:
            return "DIBATALKAN"
        return f"Step {self.current_index + 1}/{len(self.steps)}"

    def is_completed(self, index: int) -> bool:
        return index <= self.current_index


def build_timeline_view(
    fulfillment_type: str | None,
    payment_method: str | None,
    status: str | None,
) -> TimelineView:
    steps = timeline_for(fulfillment_type, payment_method, status)
    return TimelineView(
        steps=steps,
        current_index=current_step_index(status, steps),
        is_rejected=normalize_status(status) == "canceled",
    )
