"""Structured JSON event logging for tracking sessions."""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Protocol

import pandas as pd

from ordersync.ops.secrets import sanitize_logging_payload


class EventLogger(Protocol):
    """Sink for structured session events."""

    def emit(
        self,
        *,
        level: str,
        event: str,
        session_id: str | None = None,
        **fields: Any,
    ) -> None: ...


class NullEventLogger:
    """Logger that drops every event."""

    def emit(
        self,
        *,
        level: str,
        event: str,
        session_id: str | None = None,
        **fields: Any,
    ) -> None:
        del level, event, session_id, fields


class JsonEventLogger:
    """Append-only JSON-lines logger; one object per session event."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(
        self,
        *,
        level: str,
        event: str,
        session_id: str | None = None,
        **fields: Any,
    ) -> None:
        record = build_event_record(level=level, event=event, session_id=session_id, **fields)
        with self.path.open("a", encoding="utf-8") as log_file:
            log_file.write(json.dumps(record, ensure_ascii=False, sort_keys=True) + "\n")

    def read_events(self) -> list[dict[str, Any]]:
        """Load every logged event; missing file means no events yet."""
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as log_file:
            return [json.loads(line) for line in log_file if line.strip()]


def build_event_record(
    *,
    level: str,
    event: str,
    session_id: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Timestamped, credential-masked record ready for `json.dumps`."""
    record: dict[str, Any] = {
        "timestamp": pd.Timestamp.now(tz="UTC").isoformat(),
        "level": str(level).lower(),
        "event": str(event),
    }
    if session_id is not None:
        record["session_id"] = str(session_id)
    for key, value in sanitize_logging_payload(fields).items():
        record[key] = _json_value(value)
    return record


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_value(asdict(value))
    if isinstance(value, dict):
        return {str(key): _json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_value(item) for item in value]
    return str(value)
