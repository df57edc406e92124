"""Append-only session event stream."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso


@dataclass
class EventWriter:
    path: Path | None
    session_id: str
    keep: int = 500
    recent: list[dict[str, Any]] = field(default_factory=list, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event = {
            "type": event_type,
            "session_id": self.session_id,
            "ts": now_utc_iso(),
        }
        event.update(payload)
        with self._lock:
            self.recent.append(event)
            if len(self.recent) > self.keep:
                del self.recent[: len(self.recent) - self.keep]
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                line = f"{json.dumps(event, default=str)}\n"
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line)
        return event

    def types(self) -> list[str]:
        return [event["type"] for event in self.recent]
