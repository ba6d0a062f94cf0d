from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from aiworker.infrastructure.llm.providers.base import ConnectionMetrics, ProviderAdapter, merge_metadata
from aiworker.infrastructure.llm.providers.bedrock_adapter import BedrockAdapter
from aiworker.infrastructure.llm.providers.claude_adapter import ClaudeAdapter
from aiworker.infrastructure.llm.providers.mistral_adapter import MistralAdapter
from aiworker.infrastructure.llm.providers.openai_compatible_adapter import (
    OPENAI_COMPATIBLE_PROVIDERS,
    OpenAICompatibleAdapter,
)


def build_adapter_registry(
    env: Optional[Mapping[str, str]] = None,
    **adapter_kwargs: Any,
) -> Dict[str, ProviderAdapter]:
    """
    One adapter per provider. Clients are built on first call, so missing
    credentials only surface when that provider is actually used.
    """
    registry: Dict[str, ProviderAdapter] = {
        "bedrock": BedrockAdapter(env=env, **adapter_kwargs),
        "mistral": MistralAdapter(env=env, **adapter_kwargs),
        "claude": ClaudeAdapter(env=env, **adapter_kwargs),
    }
    for provider in OPENAI_COMPATIBLE_PROVIDERS:
        registry[provider] = OpenAICompatibleAdapter(provider, env=env, **adapter_kwargs)
    return registry


__all__ = [
    "BedrockAdapter",
    "ClaudeAdapter",
    "ConnectionMetrics",
    "MistralAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "build_adapter_registry",
    "merge_metadata",
]
