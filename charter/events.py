"""
Event Log - auditable record of every protocol state change.

Each mutation (marshal set, freeze toggled, fund chartered, contribution,
commitment, remittance, rescission, upgrade) appends exactly one event.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger("charter.events")

MAX_EVENTS = 10_000


@dataclass
class ProtocolEvent:
    name: str
    emitter: str                   # hub or fund address
    args: dict = field(default_factory=dict)
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        args = {k: (v.hex() if isinstance(v, (bytes, bytearray)) else v) for k, v in self.args.items()}
        return {
            "sequence": self.sequence,
            "name": self.name,
            "emitter": self.emitter,
            "args": args,
            "timestamp": self.timestamp,
        }


class EventLog:
    """Append-only, totally ordered event stream shared by a hub and its funds."""

    def __init__(self, max_events: int = MAX_EVENTS):
        self._events: list[ProtocolEvent] = []
        self._sequence: int = 0
        self._max_events = max_events
        self._lock = threading.Lock()

    def emit(self, name: str, emitter: str, **args) -> ProtocolEvent:
        with self._lock:
            self._sequence += 1
            event = ProtocolEvent(name=name, emitter=emitter, args=args, sequence=self._sequence)
            self._events.append(event)
            # Cap in-memory history; sequence numbers keep counting
            if len(self._events) > self._max_events:
                self._events = self._events[-self._max_events:]
        logger.debug(f"EVENT #{event.sequence} {name} from {emitter[:10]}...")
        return event

    def filter(self, name: Optional[str] = None, emitter: Optional[str] = None) -> list[ProtocolEvent]:
        return [
            e for e in self._events
            if (name is None or e.name == name)
            and (emitter is None or e.emitter.lower() == emitter.lower())
        ]

    def recent(self, limit: int = 20) -> list[dict]:
        return [e.to_dict() for e in self._events[-limit:]][::-1]

    def __len__(self) -> int:
        return len(self._events)
