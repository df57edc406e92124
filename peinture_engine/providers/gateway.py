"""Single-call gateway: issue one provider operation and classify it."""

from __future__ import annotations

import time
from typing import Any, Mapping
from urllib.error import URLError

from ..errors import error_for_status
from ..runs.events import EventWriter
from ..utils import token_fingerprint
from .base import FATAL_ERROR, GENERATE, OPERATIONS, STATUSES, TRANSIENT_ERROR, ProviderRegistry, ProviderResult


class ProviderGateway:
    def __init__(self, registry: ProviderRegistry, events: EventWriter | None = None) -> None:
        self.registry = registry
        self.events = events

    def requires_token(self, provider: str) -> bool:
        adapter = self.registry.get(provider)
        return bool(getattr(adapter, "requires_token", True)) if adapter else True

    def issue(self, provider: str, token: str | None, operation: str, params: Mapping[str, Any]) -> ProviderResult:
        """Run one call and return its classified result; never raises."""
        adapter = self.registry.get(provider)
        started = time.monotonic()
        if adapter is None:
            result = ProviderResult.failure(FATAL_ERROR, f"No provider available for {provider}")
        elif operation not in OPERATIONS:
            result = ProviderResult.failure(FATAL_ERROR, f"Unknown operation '{operation}'.")
        else:
            try:
                result = adapter.issue(operation, token, params)
            except (URLError, TimeoutError, ConnectionError) as exc:
                result = ProviderResult.failure(TRANSIENT_ERROR, str(exc))
            except Exception as exc:
                result = ProviderResult.failure(FATAL_ERROR, f"{type(exc).__name__}: {exc}")
            if result.status not in STATUSES:
                result = ProviderResult.failure(FATAL_ERROR, f"Unclassified provider status '{result.status}'.")
        if self.events is not None:
            self.events.emit(
                "provider_call",
                provider=provider,
                operation=operation,
                status=result.status,
                error=result.error,
                token=token_fingerprint(token),
                elapsed_s=max(time.monotonic() - started, 0.0),
            )
        return result

    def call(self, provider: str, token: str | None, operation: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        result = self.issue(provider, token, operation, params)
        if result.ok:
            return result.payload
        error_cls = error_for_status(result.status)
        raise error_cls(result.error or result.status, provider=provider, operation=operation)

    def generate(self, provider: str, token: str | None, params: Mapping[str, Any]) -> Mapping[str, Any]:
        return self.call(provider, token, GENERATE, params)
