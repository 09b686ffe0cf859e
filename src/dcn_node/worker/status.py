"""Single update channel for worker-visible UI state."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from dcn_node.models import LogEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOGS = 50

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Consistent view of processing flag and recent log entries."""

    processing: bool
    logs: tuple[LogEntry, ...]


StatusListener = Callable[[StatusSnapshot], None]


class NodeStatus:
    """Holds the processing flag and a bounded log for the presentation layer.

    All mutation goes through :meth:`publish`, which applies a log entry and a
    processing change together under one lock, so readers never see one
    without the other. Listeners are called outside the lock with the
    resulting snapshot.
    """

    def __init__(
        self,
        *,
        max_logs: int = DEFAULT_MAX_LOGS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_logs <= 0:
            raise ValueError("max_logs must be > 0")
        self._lock = threading.Lock()
        self._logs: deque[LogEntry] = deque(maxlen=max_logs)
        self._processing = False
        self._listeners: list[StatusListener] = []
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def publish(
        self,
        message: str | None = None,
        *,
        level: str = "info",
        processing: bool | None = None,
    ) -> StatusSnapshot:
        if level not in _LEVELS:
            raise ValueError(f"Unsupported log level: {level!r}")
        with self._lock:
            if message is not None:
                self._logs.append(LogEntry(timestamp=self._clock(), level=level, message=message))
            if processing is not None:
                self._processing = processing
            snapshot = self._snapshot_locked()
            listeners = tuple(self._listeners)

        if message is not None:
            logger.log(_LEVELS[level], message)
        self._notify(listeners, snapshot)
        return snapshot

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""

        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def clear(self) -> StatusSnapshot:
        """Drop all log entries and turn processing off."""

        with self._lock:
            self._logs.clear()
            self._processing = False
            snapshot = self._snapshot_locked()
            listeners = tuple(self._listeners)
        self._notify(listeners, snapshot)
        return snapshot

    def snapshot(self) -> StatusSnapshot:
        with self._lock:
            return self._snapshot_locked()

    @property
    def processing(self) -> bool:
        with self._lock:
            return self._processing

    def _snapshot_locked(self) -> StatusSnapshot:
        return StatusSnapshot(processing=self._processing, logs=tuple(self._logs))

    @staticmethod
    def _notify(listeners: tuple[StatusListener, ...], snapshot: StatusSnapshot) -> None:
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Status listener failed")
