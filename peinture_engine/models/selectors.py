"""Model selection and fallback logic."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ConfigurationError
from .registry import ModelRegistry, ModelSpec


@dataclass(frozen=True)
class ModelSelection:
    model: ModelSpec
    requested: str | None
    fallback_reason: str | None = None


class ModelSelector:
    def __init__(self, registry: ModelRegistry | None = None) -> None:
        self.registry = registry or ModelRegistry()

    def select(self, provider: str, requested: str | None, capability: str) -> ModelSelection:
        if requested:
            model = self.registry.ensure(provider, requested, capability)
            if model:
                return ModelSelection(model=model, requested=requested)
            fallback_reason = (
                f"Requested model '{requested}' unavailable on '{provider}' for capability '{capability}'."
            )
        else:
            fallback_reason = "No model specified; using default."

        candidates = self.registry.for_provider(provider, capability)
        if not candidates:
            raise ConfigurationError(f"No models available on '{provider}' for capability '{capability}'.")
        if requested and capability == "generate":
            # Generation models are never substituted.
            raise ConfigurationError(fallback_reason)
        return ModelSelection(model=candidates[0], requested=requested, fallback_reason=fallback_reason)
