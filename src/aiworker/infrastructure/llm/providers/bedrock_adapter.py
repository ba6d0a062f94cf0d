"""
AWS Bedrock adapter (pro mode and fast "ask" traffic).

boto3 is synchronous; invoke_model runs on a worker thread so the event
loop keeps serving progress messages.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config

from aiworker.domain.catalog import DEFAULT_BEDROCK_MODEL, FAST_BEDROCK_MODEL
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
from aiworker.infrastructure.llm.providers.base import ProviderAdapter

ANTHROPIC_VERSION = "bedrock-2023-05-31"


class BedrockAdapter(ProviderAdapter):
    name = "bedrock"

    def __init__(self, *, default_model: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        configured = (self._env_value("BEDROCK_MODEL_ID") or "").strip()
        self.default_model = default_model or configured or DEFAULT_BEDROCK_MODEL

    def _env_value(self, key: str) -> Optional[str]:
        source = os.environ if self._env is None else self._env
        return source.get(key)

    def model_chain(self, requested: str) -> List[str]:
        # configured model first, fast model as the last resort
        if requested == FAST_BEDROCK_MODEL:
            return [requested]
        return [requested, FAST_BEDROCK_MODEL]

    def _build_client(self, credential: ResolvedCredential) -> Any:
        config = Config(
            read_timeout=int(self.timeout),
            connect_timeout=10,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        return boto3.client("bedrock-runtime", region_name=credential.base_url, config=config)

    def build_body(self, payload: RequestPayload, config: GenerationConfig) -> Dict[str, Any]:
        system, messages = to_anthropic_messages(payload.messages, payload.system_prompt)
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": config.max_tokens,
            "messages": messages,
            **sampling_params(payload.options, config),
        }
        if system:
            body["system"] = system
        tools = to_anthropic_tools(payload.options.get("tools"))
        if tools:
            body["tools"] = tools
            choice = to_anthropic_tool_choice(payload.options.get("tool_choice"))
            if choice:
                body["tool_choice"] = choice
        return body

    async def _invoke(
        self,
        client: Any,
        request_id: str,
        payload: RequestPayload,
        model: str,
        config: GenerationConfig,
    ) -> NormalizedResult:
        body = self.build_body(payload, config)
        response = await asyncio.to_thread(
            client.invoke_model,
            modelId=model,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(body),
        )
        data = json.loads(response["body"].read())
        data.setdefault("model", model)
        return parse_anthropic_message(data)
