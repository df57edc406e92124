"""Provider base classes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol


GENERATE = "generate"
EDIT = "edit"
UPSCALE = "upscale"
TEXT = "text"
VIDEO_SUBMIT = "video-submit"
VIDEO_POLL = "video-poll"

OPERATIONS = (GENERATE, EDIT, UPSCALE, TEXT, VIDEO_SUBMIT, VIDEO_POLL)

SUCCESS = "success"
QUOTA_EXHAUSTED = "quota_exhausted"
TRANSIENT_ERROR = "transient_error"
FATAL_ERROR = "fatal_error"

STATUSES = (SUCCESS, QUOTA_EXHAUSTED, TRANSIENT_ERROR, FATAL_ERROR)

# Video task states reported inside a successful video-poll payload.
TASK_PROCESSING = "processing"
TASK_SUCCESS = "success"
TASK_FAILED = "failed"


@dataclass
class ProviderResult:
    status: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    @classmethod
    def success(cls, **payload: Any) -> "ProviderResult":
        return cls(status=SUCCESS, payload=payload)

    @classmethod
    def failure(cls, status: str, error: str) -> "ProviderResult":
        return cls(status=status, error=error)


class Provider(Protocol):
    name: str
    requires_token: bool

    def issue(self, operation: str, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        ...


def unsupported(provider: str, operation: str) -> ProviderResult:
    return ProviderResult.failure(FATAL_ERROR, f"Operation '{operation}' not supported by {provider}.")


class ProviderRegistry:
    def __init__(self, providers: Iterable[Provider]) -> None:
        self._providers = {provider.name: provider for provider in providers}

    def get(self, name: str) -> Provider | None:
        return self._providers.get(name)

    def list(self) -> list[str]:
        return sorted(self._providers.keys())

    def providers(self) -> list[Provider]:
        return list(self._providers.values())
