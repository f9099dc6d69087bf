from pathlib import Path

from contiloop.event_bus import EventBus, LoopEvent


class AuditLogger:
    """
    Subscribes to an EventBus and writes every event to an
    append-only JSONL file. Nothing touches the filesystem until the
    first event arrives.
    """

    def __init__(self, file_path: Path, event_bus: EventBus):
        self.file_path = file_path
        event_bus.subscribe(self.log_event)

    def log_event(self, event: LoopEvent) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(event.model_dump_json() + "\n")
