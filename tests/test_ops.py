from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from ordersync.ops import JsonEventLogger, SyncMetrics
from ordersync.ops.secrets import (
    is_ci_environment,
    mask_secret,
    read_secret_env,
    redact_url_token,
    sanitize_logging_payload,
)

_CI_VARIABLES = ("CI", "GITHUB_ACTIONS", "GITLAB_CI", "BUILDKITE", "CIRCLECI", "JENKINS_URL")


@pytest.fixture
def local_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _CI_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_read_secret_env_required_and_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORDERSYNC_TOKEN", "abc-123")
    assert read_secret_env("ORDERSYNC_TOKEN", required=True) == "abc-123"
    assert read_secret_env("ORDERSYNC_MISSING", default="fallback") == "fallback"
    with pytest.raises(KeyError, match="Missing required environment secret"):
        read_secret_env("ORDERSYNC_MISSING_REQUIRED", required=True)


def test_mask_secret_keeps_edges_outside_ci(local_env: pytest.MonkeyPatch) -> None:
    del local_env
    assert not is_ci_environment()
    assert mask_secret("abcdef123") == "ab*****23"
    assert mask_secret("abc") == "***"
    assert mask_secret(None) == "[MISSING]"


def test_mask_secret_in_ci_is_fully_redacted(local_env: pytest.MonkeyPatch) -> None:
    local_env.setenv("CI", "true")
    assert mask_secret("super-sensitive-value") == "[REDACTED]"


def test_redact_url_token_masks_only_token_parameter(local_env: pytest.MonkeyPatch) -> None:
    del local_env
    url = "wss://push.example/public/orders/A/ws?token=tok-12345&lang=id"
    assert redact_url_token(url) == "wss://push.example/public/orders/A/ws?token=to*****45&lang=id"
    assert redact_url_token(url, force_full_redaction=True).endswith("token=[REDACTED]&lang=id")


def test_sanitize_logging_payload_masks_nested_fields() -> None:
    sanitized = sanitize_logging_payload(
        {
            "token": "secret-token",
            "url": "https://api.example/public/orders/A?token=secret-token",
            "headers": {"Authorization": "Bearer abc", "Accept": "application/json"},
            "status": "ready",
        },
        force_full_redaction=True,
    )

    assert sanitized["token"] == "[REDACTED]"
    assert sanitized["url"].endswith("token=[REDACTED]")
    assert sanitized["headers"] == {"Authorization": "[REDACTED]", "Accept": "application/json"}
    assert sanitized["status"] == "ready"


def test_json_event_logger_writes_masked_lines(tmp_path: Path) -> None:
    logger = JsonEventLogger(tmp_path / "logs" / "events.jsonl")
    logger.emit(
        level="INFO",
        event="push_connecting",
        session_id="s-1",
        url="wss://push.example/ws?token=secret-token",
        observed_at=pd.Timestamp("2026-01-05T10:00:00Z"),
    )

    events = logger.read_events()
    assert len(events) == 1
    event = events[0]
    assert event["level"] == "info"
    assert event["event"] == "push_connecting"
    assert event["session_id"] == "s-1"
    assert "secret-token" not in event["url"]
    assert event["observed_at"] == "2026-01-05T10:00:00+00:00"


def test_sync_metrics_export(tmp_path: Path) -> None:
    metrics = SyncMetrics()
    metrics.record_fetch()
    metrics.record_fetch(failed=True)
    metrics.record_push_message()
    metrics.record_push_message(discarded=True)
    metrics.record_reconnect()
    metrics.record_snapshot_change()
    metrics.record_snapshot_change()
    metrics.finalize()

    snapshot = metrics.snapshot()
    assert snapshot.fetches_total == 2
    assert snapshot.fetch_error_rate == pytest.approx(0.5)
    assert snapshot.push_messages_discarded == 1

    prom_text = metrics.export_prometheus(tmp_path / "metrics.prom").read_text(encoding="utf-8")
    assert "ordersync_fetches_total 2" in prom_text
    assert "ordersync_reconnects_scheduled 1" in prom_text
    assert "ordersync_snapshot_changes 2" in prom_text
    assert "# TYPE ordersync_snapshot_changes counter" in prom_text
    csv_text = metrics.export_csv(tmp_path / "metrics.csv").read_text(encoding="utf-8")
    assert csv_text.splitlines()[0].startswith("fetches_total,")
