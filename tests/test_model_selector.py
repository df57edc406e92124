from __future__ import annotations

import pytest

from peinture_engine.errors import ConfigurationError
from peinture_engine.models.registry import ModelRegistry, ModelSpec, StepRange
from peinture_engine.models.selectors import ModelSelector
from peinture_engine.providers.base import ProviderRegistry


def test_model_selector_returns_requested_model() -> None:
    selection = ModelSelector().select("gitee", "flux-2", "generate")

    assert selection.model.remote_id == "FLUX.2-dev"
    assert selection.model.guidance_default == 3.5
    assert selection.fallback_reason is None


def test_model_selector_no_request_uses_default_with_explanation() -> None:
    selection = ModelSelector().select("gitee", None, "generate")

    assert selection.model.name == "z-image-turbo"
    assert selection.fallback_reason == "No model specified; using default."


def test_unknown_generation_model_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Requested model 'missing' unavailable"):
        ModelSelector().select("gitee", "missing", "generate")


def test_text_model_falls_back_to_provider_default() -> None:
    selection = ModelSelector().select("a4f", "missing", "text")

    assert selection.model.name == "gemini-2.5-flash-lite"
    assert selection.requested == "missing"
    assert selection.fallback_reason.startswith("Requested model 'missing' unavailable on 'a4f'")


def test_model_selector_raises_when_no_models_for_capability() -> None:
    registry = ModelRegistry([ModelSpec(name="text-only", provider="dryrun", capabilities=("text",))])
    with pytest.raises(ConfigurationError, match="No models available on 'dryrun' for capability 'upscale'."):
        ModelSelector(registry).select("dryrun", None, "upscale")


def test_step_range_clamps() -> None:
    steps = StepRange(4, 50, 20)
    assert steps.clamp(None) == 20
    assert steps.clamp(1) == 4
    assert steps.clamp(80) == 50


def test_provider_registry_lists_sorted_names() -> None:
    registry = ProviderRegistry([_DummyProvider("z"), _DummyProvider("a"), _DummyProvider("m")])
    assert registry.list() == ["a", "m", "z"]
    assert [p.name for p in registry.providers()] == ["z", "a", "m"]


class _DummyProvider:
    requires_token = False

    def __init__(self, name: str) -> None:
        self.name = name

    def issue(self, operation, token, params):
        raise NotImplementedError
