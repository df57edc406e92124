"""Persistence boundary for history, prompts and token health."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .utils import read_json, write_json


class PersistenceBackend(Protocol):
    def load_history(self) -> list[dict[str, Any]]:
        ...

    def save_history(self, entries: list[dict[str, Any]]) -> None:
        ...

    def load_prompt_history(self) -> list[str]:
        ...

    def save_prompt_history(self, prompts: list[str]) -> None:
        ...

    def load_token_health(self, provider: str) -> dict[str, Any]:
        ...

    def save_token_health(self, provider: str, payload: dict[str, Any]) -> None:
        ...


@dataclass
class MemoryBackend:
    history: list[dict[str, Any]] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)
    token_health: dict[str, dict[str, Any]] = field(default_factory=dict)
    saves: int = 0

    def load_history(self) -> list[dict[str, Any]]:
        return deepcopy(self.history)

    def save_history(self, entries: list[dict[str, Any]]) -> None:
        self.history = deepcopy(entries)
        self.saves += 1

    def load_prompt_history(self) -> list[str]:
        return list(self.prompts)

    def save_prompt_history(self, prompts: list[str]) -> None:
        self.prompts = list(prompts)

    def load_token_health(self, provider: str) -> dict[str, Any]:
        return deepcopy(self.token_health.get(provider, {}))

    def save_token_health(self, provider: str, payload: dict[str, Any]) -> None:
        self.token_health[provider] = deepcopy(payload)


@dataclass
class JsonFileBackend:
    root: Path

    @property
    def history_path(self) -> Path:
        return self.root / "history.json"

    @property
    def prompts_path(self) -> Path:
        return self.root / "prompts.json"

    def token_path(self, provider: str) -> Path:
        return self.root / "tokens" / f"{provider}.json"

    def load_history(self) -> list[dict[str, Any]]:
        payload = read_json(self.history_path, [])
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    def save_history(self, entries: list[dict[str, Any]]) -> None:
        write_json(self.history_path, entries)

    def load_prompt_history(self) -> list[str]:
        payload = read_json(self.prompts_path, [])
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, str)]

    def save_prompt_history(self, prompts: list[str]) -> None:
        write_json(self.prompts_path, prompts)

    def load_token_health(self, provider: str) -> dict[str, Any]:
        payload = read_json(self.token_path(provider), {})
        return payload if isinstance(payload, dict) else {}

    def save_token_health(self, provider: str, payload: dict[str, Any]) -> None:
        write_json(self.token_path(provider), payload)
