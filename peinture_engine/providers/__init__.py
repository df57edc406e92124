"""Provider registry."""

from __future__ import annotations

from .base import ProviderRegistry
from .dryrun import DryRunProvider
from .gitee import GiteeProvider
from .a4f import A4FProvider
from .huggingface import HuggingFaceProvider
from .modelscope import ModelScopeProvider


def default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        [
            DryRunProvider(),
            HuggingFaceProvider(),
            GiteeProvider(),
            ModelScopeProvider(),
            A4FProvider(),
        ]
    )
