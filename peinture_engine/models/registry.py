"""Model catalog: unified model ids and their provider-specific names."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class StepRange:
    minimum: int
    maximum: int
    default: int

    def clamp(self, value: int | None) -> int:
        if value is None:
            return self.default
        return max(self.minimum, min(self.maximum, int(value)))


@dataclass(frozen=True)
class ModelSpec:
    name: str
    provider: str
    capabilities: tuple[str, ...]
    api_id: str | None = None
    steps: StepRange | None = None
    guidance_default: float | None = None
    hd_multiplier: float = 2.0

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.name}"

    @property
    def remote_id(self) -> str:
        return self.api_id or self.name


_DEFAULT_STEPS = StepRange(1, 20, 9)
_FLUX_STEPS = StepRange(1, 50, 20)


_DEFAULT_MODELS: tuple[ModelSpec, ...] = (
    ModelSpec("dryrun-image", "dryrun", ("generate", "edit"), steps=_DEFAULT_STEPS),
    ModelSpec("dryrun-upscaler", "dryrun", ("upscale",)),
    ModelSpec("dryrun-video", "dryrun", ("video",)),
    ModelSpec("dryrun-text", "dryrun", ("text",)),
    ModelSpec("z-image-turbo", "huggingface", ("generate",), api_id="z-image-turbo", steps=_DEFAULT_STEPS),
    ModelSpec("qwen-image", "huggingface", ("generate",), api_id="qwen-image-fast", steps=StepRange(4, 28, 8)),
    ModelSpec("ovis-image", "huggingface", ("generate",), api_id="ovis-image", steps=StepRange(1, 50, 20)),
    ModelSpec("flux-1-schnell", "huggingface", ("generate",), api_id="flux-1-schnell", steps=StepRange(1, 50, 8)),
    ModelSpec("qwen-image-edit", "huggingface", ("edit",), api_id="qwen-image-edit", steps=StepRange(1, 20, 4)),
    ModelSpec("RealESRGAN_x4plus", "huggingface", ("upscale",)),
    ModelSpec("wan2_2-i2v", "huggingface", ("video",), api_id="wan2.2"),
    ModelSpec("openai-fast", "huggingface", ("text",)),
    ModelSpec("z-image-turbo", "gitee", ("generate",), api_id="z-image-turbo", steps=_DEFAULT_STEPS),
    ModelSpec("qwen-image", "gitee", ("generate",), api_id="Qwen-Image", steps=StepRange(4, 50, 20)),
    ModelSpec(
        "flux-2",
        "gitee",
        ("generate",),
        api_id="FLUX.2-dev",
        steps=_FLUX_STEPS,
        guidance_default=3.5,
        hd_multiplier=1.5,
    ),
    ModelSpec(
        "flux-1-schnell",
        "gitee",
        ("generate",),
        api_id="flux-1-schnell",
        steps=StepRange(1, 50, 8),
        guidance_default=7.5,
        hd_multiplier=1.5,
    ),
    ModelSpec(
        "flux-1-krea",
        "gitee",
        ("generate",),
        api_id="FLUX_1-Krea-dev",
        steps=_FLUX_STEPS,
        guidance_default=4.5,
        hd_multiplier=1.5,
    ),
    ModelSpec(
        "flux-1",
        "gitee",
        ("generate",),
        api_id="FLUX.1-dev",
        steps=_FLUX_STEPS,
        guidance_default=4.5,
        hd_multiplier=1.5,
    ),
    ModelSpec("qwen-image-edit", "gitee", ("edit",), api_id="Qwen-Image-Edit"),
    ModelSpec("wan2_2-i2v", "gitee", ("video",), api_id="Wan2_2-I2V-A14B"),
    ModelSpec("deepseek-3_2", "gitee", ("text",), api_id="DeepSeek-V3.2"),
    ModelSpec("qwen-3", "gitee", ("text",), api_id="Qwen3-Next-80B-A3B-Instruct"),
    ModelSpec("z-image-turbo", "modelscope", ("generate",), api_id="Tongyi-MAI/Z-Image-Turbo", steps=_DEFAULT_STEPS),
    ModelSpec(
        "flux-2",
        "modelscope",
        ("generate",),
        api_id="black-forest-labs/FLUX.2-dev",
        steps=_FLUX_STEPS,
        guidance_default=3.5,
    ),
    ModelSpec(
        "qwen-image-edit",
        "modelscope",
        ("edit",),
        api_id="Qwen/Qwen-Image-Edit-2509",
        steps=StepRange(4, 28, 16),
        guidance_default=4,
    ),
    ModelSpec("deepseek-3_2", "modelscope", ("text",), api_id="deepseek-ai/DeepSeek-V3.2"),
    ModelSpec("qwen-3", "modelscope", ("text",), api_id="Qwen/Qwen3-Next-80B-A3B-Instruct"),
    ModelSpec("z-image-turbo", "a4f", ("generate",), api_id="provider-8/z-image", steps=_DEFAULT_STEPS),
    ModelSpec("imagen-4", "a4f", ("generate",), api_id="provider-8/imagen-4", steps=_DEFAULT_STEPS),
    ModelSpec("imagen-3.5", "a4f", ("generate",), api_id="provider-4/imagen-3.5", steps=_DEFAULT_STEPS),
    ModelSpec("gemini-2.5-flash-lite", "a4f", ("text",), api_id="provider-5/gemini-2.5-flash-lite"),
    ModelSpec("deepseek-v3.1", "a4f", ("text",), api_id="provider-2/deepseek-v3.1"),
    ModelSpec("qwen-3", "a4f", ("text",), api_id="provider-8/qwen3-235b"),
)


class ModelRegistry:
    def __init__(self, models: Iterable[ModelSpec] | None = None) -> None:
        specs = list(models) if models is not None else list(_DEFAULT_MODELS)
        self._models = {spec.key: spec for spec in specs}

    def get(self, provider: str, name: str) -> ModelSpec | None:
        return self._models.get(f"{provider}:{name}")

    def list(self) -> Iterable[ModelSpec]:
        return self._models.values()

    def for_provider(self, provider: str, capability: str) -> list[ModelSpec]:
        return [
            model
            for model in self._models.values()
            if model.provider == provider and model.supports(capability)
        ]

    def ensure(self, provider: str, name: str, capability: str) -> ModelSpec | None:
        model = self.get(provider, name)
        if model and model.supports(capability):
            return model
        return None
