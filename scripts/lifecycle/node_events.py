from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any, Optional


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class EventSink:
    def __init__(self, path: Optional[Path]) -> None:
        self.path = path
        self._lock = threading.Lock()

    def emit(self, event_type: str, message: str, **extra: Any) -> None:
        payload = {
            "time": now_iso(),
            "event": event_type,
            "message": message,
            **extra,
        }
        line = json.dumps(payload, sort_keys=True, default=str)
        # Watchers emit from their own threads.
        with self._lock:
            if self.path is not None:
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            print(f"[{payload['time']}] {event_type}: {message}", flush=True)


def ensure_events_file(runtime_dir_arg: str, events_file_arg: Optional[str]) -> Path:
    if events_file_arg:
        events_file = Path(events_file_arg).expanduser().resolve()
    else:
        events_file = Path(runtime_dir_arg).expanduser().resolve() / "events.jsonl"
    events_file.parent.mkdir(parents=True, exist_ok=True)
    return events_file
