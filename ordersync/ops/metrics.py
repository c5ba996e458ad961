"""Runtime counters for one tracking session and their export."""

from __future__ import annotations

import csv
from dataclasses import asdict, dataclass
from pathlib import Path

import pandas as pd


@dataclass(slots=True)
class SyncMetricsSnapshot:
    """Point-in-time copy of session counters."""

    fetches_total: int
    fetch_failures_total: int
    push_messages_total: int
    push_messages_discarded: int
    reconnects_scheduled: int
    snapshot_changes: int
    fetch_error_rate: float
    uptime_seconds: float


class SyncMetrics:
    """Collect sync counters and export to Prometheus text / CSV."""

    def __init__(self) -> None:
        self.start_time = pd.Timestamp.now(tz="UTC")
        self.end_time: pd.Timestamp | None = None
        self.fetches_total = 0
        self.fetch_failures_total = 0
        self.push_messages_total = 0
        self.push_messages_discarded = 0
        self.reconnects_scheduled = 0
        self.snapshot_changes = 0

    def record_fetch(self, *, failed: bool = False) -> None:
        self.fetches_total += 1
        if failed:
            self.fetch_failures_total += 1

    def record_push_message(self, *, discarded: bool = False) -> None:
        self.push_messages_total += 1
        if discarded:
            self.push_messages_discarded += 1

    def record_reconnect(self) -> None:
        self.reconnects_scheduled += 1

    def record_snapshot_change(self) -> None:
        self.snapshot_changes += 1

    def finalize(self) -> None:
        """Mark metrics collection end timestamp."""
        self.end_time = pd.Timestamp.now(tz="UTC")

    def snapshot(self) -> SyncMetricsSnapshot:
        error_rate = (
            float(self.fetch_failures_total / self.fetches_total)
            if self.fetches_total > 0
            else 0.0
        )
        stop_time = self.end_time or pd.Timestamp.now(tz="UTC")
        return SyncMetricsSnapshot(
            fetches_total=int(self.fetches_total),
            fetch_failures_total=int(self.fetch_failures_total),
            push_messages_total=int(self.push_messages_total),
            push_messages_discarded=int(self.push_messages_discarded),
            reconnects_scheduled=int(self.reconnects_scheduled),
            snapshot_changes=int(self.snapshot_changes),
            fetch_error_rate=error_rate,
            uptime_seconds=max(float((stop_time - self.start_time).total_seconds()), 0.0),
        )

    def export_prometheus(self, path: str | Path) -> Path:
        """Export metrics in simple Prometheus text format."""
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        metrics = self.snapshot()
        lines = [
            "# HELP ordersync_fetches_total Order fetches issued.",
            "# TYPE ordersync_fetches_total counter",
            f"ordersync_fetches_total {metrics.fetches_total}",
            "# HELP ordersync_fetch_failures_total Order fetches that failed.",
            "# TYPE ordersync_fetch_failures_total counter",
            f"ordersync_fetch_failures_total {metrics.fetch_failures_total}",
            "# HELP ordersync_push_messages_total Push frames received.",
            "# TYPE ordersync_push_messages_total counter",
            f"ordersync_push_messages_total {metrics.push_messages_total}",
            "# HELP ordersync_push_messages_discarded Push frames dropped as malformed.",
            "# TYPE ordersync_push_messages_discarded counter",
            f"ordersync_push_messages_discarded {metrics.push_messages_discarded}",
            "# HELP ordersync_reconnects_scheduled Push reconnects scheduled.",
            "# TYPE ordersync_reconnects_scheduled counter",
            f"ordersync_reconnects_scheduled {metrics.reconnects_scheduled}",
            "# HELP ordersync_snapshot_changes Snapshot merges that changed the order.",
            "# TYPE ordersync_snapshot_changes counter",
            f"ordersync_snapshot_changes {metrics.snapshot_changes}",
            "# HELP ordersync_fetch_error_rate Failed fetch ratio.",
            "# TYPE ordersync_fetch_error_rate gauge",
            f"ordersync_fetch_error_rate {metrics.fetch_error_rate:.10f}",
        ]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path

    def export_csv(self, path: str | Path) -> Path:
        """Export metrics as single-row CSV."""
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        row = asdict(self.snapshot())
        with output_path.open("w", encoding="utf-8", newline="") as csv_file:
            writer = csv.DictWriter(csv_file, fieldnames=list(row))
            writer.writeheader()
            writer.writerow(row)
        return output_path
