"""Error taxonomy surfaced by the engine."""

from __future__ import annotations


class PeintureError(RuntimeError):
    """Base class for every error the engine reports to its caller."""


class ConfigurationError(PeintureError):
    """No usable provider, token or model. Never retried."""


class GatewayError(PeintureError):
    """A classified provider failure."""

    status = "fatal_error"

    def __init__(self, message: str, *, provider: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.operation = operation


class QuotaExhausted(GatewayError):
    status = "quota_exhausted"


class TransientError(GatewayError):
    status = "transient_error"


class FatalError(GatewayError):
    status = "fatal_error"


class VideoTimeout(PeintureError):
    """Polling budget for a video task ran out."""


_BY_STATUS: dict[str, type[GatewayError]] = {
    QuotaExhausted.status: QuotaExhausted,
    TransientError.status: TransientError,
    FatalError.status: FatalError,
}


def error_for_status(status: str) -> type[GatewayError]:
    return _BY_STATUS.get(status, FatalError)


class JobNotFound(PeintureError):
    """No history entry with the requested id (or no current job)."""
