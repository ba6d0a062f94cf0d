"""
Adapter for OpenAI-compatible endpoints.

One class serves three providers that differ only in credential and base
URL: a self-hosted LiteLLM proxy, IONOS model hub and OpenAI itself.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from aiworker.domain.catalog import PROVIDER_DEFAULT_MODELS
from aiworker.domain.task import NormalizedResult, RequestPayload
from aiworker.infrastructure.llm.credentials import ResolvedCredential
from aiworker.infrastructure.llm.generation_config import GenerationConfig
from aiworker.infrastructure.llm.providers.base import ProviderAdapter, as_dict
from aiworker.infrastructure.llm.providers.openai_format import (
    parse_chat_completion,
    to_openai_messages,
    to_openai_tool_choice,
    to_openai_tools,
)

OPENAI_COMPATIBLE_PROVIDERS = ("litellm", "ionos", "openai")


class OpenAICompatibleAdapter(ProviderAdapter):
    # IONOS and most LiteLLM backends reject image parts
    _IMAGE_CAPABLE = {"openai"}
    extracts_documents = True

    def __init__(self, provider: str, *, default_model: Optional[str] = None, **kwargs: Any):
        if provider not in OPENAI_COMPATIBLE_PROVIDERS:
            raise ValueError(f"{provider} is not an OpenAI-compatible provider")
        self.name = provider
        self.default_model = default_model or PROVIDER_DEFAULT_MODELS[provider]
        super().__init__(**kwargs)

    def _build_client(self, credential: ResolvedCredential) -> AsyncOpenAI:
        # retries are owned by ProviderAdapter.execute
        return AsyncOpenAI(
            api_key=credential.api_key,
            base_url=credential.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    def build_request(self, payload: RequestPayload, model: str, config: GenerationConfig) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(
                payload.messages,
                payload.system_prompt,
                images=self.name in self._IMAGE_CAPABLE,
            ),
            "temperature": config.temperature,
            "top_p": config.top_p,
            "max_tokens": config.max_tokens,
        }
        tools = to_openai_tools(payload.options.get("tools"))
        if tools:
            kwargs["tools"] = tools
            choice = to_openai_tool_choice(payload.options.get("tool_choice"))
            if choice:
                kwargs["tool_choice"] = choice
        if payload.options.get("response_format"):
            kwargs["response_format"] = payload.options["response_format"]
        return kwargs

    async def _invoke(
        self,
        client: Any,
        request_id: str,
        payload: RequestPayload,
        model: str,
        config: GenerationConfig,
    ) -> NormalizedResult:
        response = await client.chat.completions.create(**self.build_request(payload, model, config))
        return parse_chat_completion(as_dict(response))
