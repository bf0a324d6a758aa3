import os
import threading

from ticketloom.event_bus import EventBus, LoomEvent


class AuditLogger:
    """
    Audit Logger that subscribes to an Event Bus and writes events
    to an append-only JSONL file.
    """
    def __init__(self, file_path: str, event_bus: EventBus, include_raw_output: bool = False):
        self.file_path = file_path
        self.event_bus = event_bus
        self.include_raw_output = include_raw_output
        self._lock = threading.Lock()

        # Ensure the directory exists
        os.makedirs(os.path.dirname(os.path.abspath(self.file_path)), exist_ok=True)

        self.event_bus.subscribe(self.log_event)

    def log_event(self, event: LoomEvent) -> None:
        """
        Callback to handle incoming events and append them to the JSONL file.
        """
        if event.event_type == "raw_output" and not self.include_raw_output:
            return
        line = event.model_dump_json() + "\n"
        with self._lock:
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write(line)

    def close(self) -> None:
        self.event_bus.unsubscribe(self.log_event)
