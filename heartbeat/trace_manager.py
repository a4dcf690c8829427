"""
In-memory ring buffer of observable monitor events.
"""
import time
import logging
from collections import deque
from enum import Enum
from typing import List, Optional
from dataclasses import dataclass, asdict, field

logger = logging.getLogger("RconHeartbeat.TraceManager")


class EventKind(str, Enum):
    STARTED = "STARTED"
    ATTEMPT_FAILED = "ATTEMPT_FAILED"
    CYCLE_SUCCEEDED = "CYCLE_SUCCEEDED"
    CYCLE_FAILED_WARN = "CYCLE_FAILED_WARN"
    CYCLE_FAILED_DOWN = "CYCLE_FAILED_DOWN"
    HEARTBEAT_FAILED = "HEARTBEAT_FAILED"


@dataclass
class TraceEvent:
    """A single observable monitor event"""
    kind: EventKind
    timestamp: float = field(default_factory=time.time)
    attempt_index: Optional[int] = None
    error_kind: Optional[str] = None
    count: Optional[int] = None
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["timestamp_iso"] = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(self.timestamp))
        return data


class TraceManager:
    """Keeps the last `max_events` events; older ones fall off."""

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self.events: deque[TraceEvent] = deque(maxlen=max_events)

    def emit(self, event: TraceEvent):
        self.events.append(event)
        logger.debug(f"Trace event: {event.kind.value} attempt={event.attempt_index} "
                     f"error={event.error_kind} count={event.count}")

    def get_recent_events(self, limit: int = 100, kind: Optional[EventKind] = None) -> List[dict]:
        """Up to `limit` newest events as dicts, oldest first"""
        if limit <= 0:
            return []
        events = [e for e in self.events if kind is None or e.kind == kind]
        return [e.to_dict() for e in events[-limit:]]

    def clear(self):
        self.events.clear()


# Global singleton
trace_manager = TraceManager()
