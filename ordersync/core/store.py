"""Last-known order snapshot with idempotent full-replacement merge."""

from __future__ import annotations

from collections.abc import Callable

import pandas as pd

from ordersync.core.models import OrderSnapshot, utc_now

SnapshotListener = Callable[[OrderSnapshot, str], None]


class OrderSnapshotStore:
    """Holds the latest order snapshot for one tracking session.

    `merge()` replaces the stored snapshot wholesale. Merging a snapshot equal
    to the current one changes nothing observable: `last_updated` stays put and
    listeners are not called.
    """

    def __init__(
        self,
        clock: Callable[[], pd.Timestamp] | None = None,
        on_listener_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self._clock = clock or utc_now
        self._on_listener_error = on_listener_error
        self._snapshot: OrderSnapshot | None = None
        self._last_updated: pd.Timestamp | None = None
        self._last_source: str | None = None
        self._merge_count = 0
        self._listeners: list[SnapshotListener] = []

    def current(self) -> OrderSnapshot | None:
        return self._snapshot

    @property
    def last_updated(self) -> pd.Timestamp | None:
        return self._last_updated

    @property
    def last_source(self) -> str | None:
        return self._last_source

    @property
    def merge_count(self) -> int:
        """Number of merges that actually changed the stored snapshot."""
        return self._merge_count

    def merge(self, snapshot: OrderSnapshot, *, source: str = "fetch") -> bool:
        """Replace the stored snapshot; return whether anything changed."""
        if self._snapshot is not None and self._snapshot == snapshot:
            return False

        self._snapshot = snapshot
        self._last_updated = self._clock()
        self._last_source = str(source)
        self._merge_count += 1

        for listener in list(self._listeners):
            try:
                listener(snapshot, self._last_source)
            except Exception as error:
                if self._on_listener_error is None:
                    raise
                self._on_listener_error(error)
        return True

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a change listener and return its unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
