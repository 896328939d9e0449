"""
Audit sinks and the buffered emitter used by the engine.

Audit is best-effort: a sink that fails never aborts or rolls back a run.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional
import json
import logging
import threading

from ..models.record import AuditEvent

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Write-only destination for audit events."""

    @abstractmethod
    def emit(self, event: AuditEvent) -> None:
        """Append one event."""

    def emit_many(self, events: Iterable[AuditEvent]) -> None:
        """Append several events. Sinks with a bulk write should override this."""
        for event in events:
            self.emit(event)


class InMemoryAuditSink(AuditSink):
    """Keeps events in a list."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def emit_many(self, events: Iterable[AuditEvent]) -> None:
        with self._lock:
            self.events.extend(events)


class LoggingAuditSink(AuditSink):
    """Writes events as JSON to a logger."""

    def __init__(self, logger_name: str = "record_recon.audit.trail"):
        self.trail = logging.getLogger(logger_name)

    def emit(self, event: AuditEvent) -> None:
        self.trail.info(json.dumps(event.to_dict(), default=str))


class JsonlAuditSink(AuditSink):
    """Appends events to a JSON Lines file."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def emit(self, event: AuditEvent) -> None:
        self.emit_many([event])

    def emit_many(self, events: Iterable[AuditEvent]) -> None:
        lines = [json.dumps(event.to_dict(), default=str) for event in events]
        if not lines:
            return
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")


class BufferedAuditEmitter:
    """
    Collects the events of one run and hands them to the sink in one flush.

    Each status transition still produces its own event; only delivery is
    batched.
    """

    def __init__(self, sink: Optional[AuditSink]):
        self.sink = sink
        self.pending: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.pending.append(event)

    def flush(self) -> int:
        """
        Deliver buffered events.

        Returns:
            Number of events delivered, 0 when there is no sink or delivery failed
        """
        events, self.pending = self.pending, []
        if self.sink is None or not events:
            return 0

        try:
            self.sink.emit_many(events)
        except Exception as e:
            logger.warning(f"Failed to emit {len(events)} audit events: {e}")
            return 0
        return len(events)
