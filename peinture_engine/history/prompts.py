"""Most-recently-used prompt list."""

from __future__ import annotations

from ..runs.events import EventWriter
from ..storage import PersistenceBackend


PROMPT_HISTORY_LIMIT = 50


class PromptHistory:
    def __init__(
        self,
        backend: PersistenceBackend | None = None,
        limit: int = PROMPT_HISTORY_LIMIT,
        *,
        events: EventWriter | None = None,
    ) -> None:
        self.backend = backend
        self.limit = limit
        self.events = events
        self._items: list[str] = []

    def load(self) -> list[str]:
        items: list[str] = []
        if self.backend is not None:
            for raw in self.backend.load_prompt_history():
                text = raw.strip()
                if text and text not in items:
                    items.append(text)
        self._items = items[: self.limit]
        return self.all()

    def add(self, text: str) -> bool:
        trimmed = (text or "").strip()
        if not trimmed:
            return False
        self._items = [trimmed] + [item for item in self._items if item != trimmed]
        del self._items[self.limit :]
        self._save()
        return True

    def all(self) -> list[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items = []
        self._save()

    def __len__(self) -> int:
        return len(self._items)

    def _save(self) -> None:
        if self.backend is None:
            return
        try:
            self.backend.save_prompt_history(list(self._items))
        except OSError as exc:
            if self.events is not None:
                self.events.emit("persist_failed", target="prompts", error=str(exc))
