"""Direct Anthropic API adapter."""

from __future__ import annotations

from typing import Any, Dict

from anthropic import AsyncAnthropic

from aiworker.domain.catalog import PROVIDER_DEFAULT_MODELS
from aiworker.domain.task import NormalizedResult, RequestPayload
from aiworker.infrastructure.llm.credentials import ResolvedCredential
from aiworker.infrastructure.llm.generation_config import GenerationConfig
from aiworker.infrastructure.llm.providers.anthropic_format import (
    parse_anthropic_message,
    sampling_params,
    to_anthropic_messages,
    to_anthropic_tool_choice,
    to_anthropic_tools,
)
from aiworker.infrastructure.llm.providers.base import ProviderAdapter, as_dict


class ClaudeAdapter(ProviderAdapter):
    name = "claude"
    default_model = PROVIDER_DEFAULT_MODELS["claude"]

    def _build_client(self, credential: ResolvedCredential) -> AsyncAnthropic:
        return AsyncAnthropic(api_key=credential.api_key, timeout=self.timeout, max_retries=0)

    def build_request(self, payload: RequestPayload, model: str, config: GenerationConfig) -> Dict[str, Any]:
        system, messages = to_anthropic_messages(payload.messages, payload.system_prompt)
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": config.max_tokens,
            "messages": messages,
            **sampling_params(payload.options, config),
        }
        if system:
            kwargs["system"] = system
        tools = to_anthropic_tools(payload.options.get("tools"))
        if tools:
            kwargs["tools"] = tools
            choice = to_anthropic_tool_choice(payload.options.get("tool_choice"))
            if choice:
                kwargs["tool_choice"] = choice
        return kwargs

    async def _invoke(
        self,
        client: Any,
        request_id: str,
        payload: RequestPayload,
        model: str,
        config: GenerationConfig,
    ) -> NormalizedResult:
        message = await client.messages.create(**self.build_request(payload, model, config))
        return parse_anthropic_message(as_dict(message))
