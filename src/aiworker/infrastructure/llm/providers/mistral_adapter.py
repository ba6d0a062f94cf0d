"""
Mistral adapter: baseline provider for standard traffic.

Talks to the chat-completions endpoint over aiohttp. When a model keeps
failing transiently the adapter degrades large -> medium -> small.
"""

from __future__ import annotations

from typing import Any, Dict

from aiworker.domain.catalog import DEFAULT_MODEL, MISTRAL_MODEL_HIERARCHY
from aiworker.domain.task import NormalizedResult, RequestPayload
from aiworker.infrastructure.api_clients.base import APIClient
from aiworker.infrastructure.llm.credentials import ResolvedCredential
from aiworker.infrastructure.llm.generation_config import GenerationConfig
from aiworker.infrastructure.llm.providers.base import ProviderAdapter
from aiworker.infrastructure.llm.providers.openai_format import (
    parse_chat_completion,
    to_openai_messages,
    to_openai_tool_choice,
    to_openai_tools,
)


class MistralAdapter(ProviderAdapter):
    name = "mistral"
    default_model = DEFAULT_MODEL
    model_hierarchy = MISTRAL_MODEL_HIERARCHY
    extracts_documents = True

    def _build_client(self, credential: ResolvedCredential) -> APIClient:
        return APIClient(
            base_url=credential.base_url or "https://api.mistral.ai/v1",
            api_key=credential.api_key,
            timeout=self.timeout,
        )

    def build_request(self, payload: RequestPayload, model: str, config: GenerationConfig) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model,
            "messages": to_openai_messages(payload.messages, payload.system_prompt),
            "temperature": config.temperature,
            "top_p": config.top_p,
            "max_tokens": config.max_tokens,
        }
        tools = to_openai_tools(payload.options.get("tools"))
        if tools:
            body["tools"] = tools
            choice = to_openai_tool_choice(payload.options.get("tool_choice"))
            body["tool_choice"] = "any" if choice == "required" else (choice or "auto")
        if payload.options.get("response_format"):
            body["response_format"] = payload.options["response_format"]
        return body

    async def _invoke(
        self,
        client: Any,
        request_id: str,
        payload: RequestPayload,
        model: str,
        config: GenerationConfig,
    ) -> NormalizedResult:
        data = await client.post_json("chat/completions", self.build_request(payload, model, config))
        return parse_chat_completion(data)
