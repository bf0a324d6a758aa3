import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field


class LoomEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_type: str
    ticket_id: str
    payload: Dict[str, Any]


class EventBus:
    """A lightweight, synchronous event bus for decoupling ticketloom observability."""

    def __init__(self):
        self._subscribers: List[Callable[[LoomEvent], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[LoomEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[LoomEvent], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def emit(self, event_type: str, ticket_id: str, payload: Dict[str, Any]) -> None:
        """Construct and broadcast a LoomEvent to all subscribers."""
        event = LoomEvent(
            event_type=event_type,
            ticket_id=ticket_id,
            payload=payload
        )

        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                # a failing subscriber (like a bad file write) must not crash the pipeline
                logger.warning(f"[EVENTS] Subscriber failed on {event_type}: {e}")


class ProgressChannel:
    """Progress and raw output of one ticket, published on an EventBus."""

    def __init__(self, bus: EventBus, ticket_id: str):
        self.bus = bus
        self.ticket_id = ticket_id

    def progress(self, message: str, **extra: Any) -> None:
        self.bus.emit("progress", self.ticket_id, {"message": message, **extra})

    def raw_output(self, chunk: str) -> None:
        self.bus.emit("raw_output", self.ticket_id, {"chunk": chunk})

    def step(self, name: str, status: str, **extra: Any) -> None:
        self.bus.emit("step", self.ticket_id, {"step": name, "status": status, **extra})


# Global singleton instance for easy imports across the project
bus = EventBus()
