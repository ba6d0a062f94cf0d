import io
import json

import pytest

from aiworker.application.services.fallback_coordinator import FallbackCoordinator
from aiworker.application.services.task_processor import TaskProcessor
from aiworker.domain.catalog import DEFAULT_BEDROCK_MODEL, FAST_BEDROCK_MODEL
from aiworker.domain.task import RequestPayload, StopReason
from aiworker.infrastructure.llm.errors import ConfigurationError
from aiworker.infrastructure.llm.providers.bedrock_adapter import ANTHROPIC_VERSION, BedrockAdapter


class _ThrottlingException(Exception):
    def __init__(self):
        super().__init__("An error occurred (ThrottlingException) when calling the InvokeModel operation")
        self.response = {"Error": {"Code": "ThrottlingException"}, "ResponseMetadata": {"HTTPStatusCode": 429}}


class _FakeBedrockClient:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def invoke_model(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return {"body": io.BytesIO(json.dumps(reply).encode("utf-8"))}


async def _no_sleep(_delay):
    return None


def _message(blocks, stop_reason="end_turn"):
    return {
        "content": blocks,
        "stop_reason": stop_reason,
        "usage": {"input_tokens": 12, "output_tokens": 4},
    }


def _payload(**options):
    return RequestPayload(
        type="rede",
        messages=[
            {"role": "system", "content": "Zusatzregel"},
            {"role": "user", "content": "Schreib eine Rede"},
        ],
        system_prompt="Du bist Redenschreiber.",
        options=options,
    )


@pytest.mark.asyncio
async def test_invoke_model_body_and_result():
    client = _FakeBedrockClient([_message([{"type": "text", "text": "Liebe Freundinnen"}])])
    adapter = BedrockAdapter(client=client, env={}, sleep=_no_sleep)

    result = await adapter("r1", _payload(useBedrock=True))

    call = client.calls[0]
    assert call["modelId"] == DEFAULT_BEDROCK_MODEL
    body = json.loads(call["body"])
    assert body["anthropic_version"] == ANTHROPIC_VERSION
    assert body["system"] == "Du bist Redenschreiber.\n\nZusatzregel"
    assert body["messages"] == [{"role": "user", "content": "Schreib eine Rede"}]
    assert body["temperature"] == 0.4
    assert body["max_tokens"] == 4096

    assert result.content == "Liebe Freundinnen"
    assert result.stop_reason == StopReason.STOP
    assert result.metadata["provider"] == "bedrock"
    assert result.metadata["model"] == DEFAULT_BEDROCK_MODEL
    assert result.metadata["usage"] == {"input_tokens": 12, "output_tokens": 4}


@pytest.mark.asyncio
async def test_tool_use_blocks_are_kept():
    blocks = [
        {"type": "text", "text": "Ich schaue nach."},
        {"type": "tool_use", "id": "tu_1", "name": "lookup", "input": {"term": "Wind"}},
    ]
    client = _FakeBedrockClient([_message(blocks, stop_reason="tool_use")])
    adapter = BedrockAdapter(client=client, env={}, sleep=_no_sleep)

    result = await adapter("r1", _payload(tools=[{"type": "function", "function": {"name": "lookup", "parameters": {"type": "object"}}}]))

    assert result.stop_reason == StopReason.TOOL_USE
    assert result.tool_calls[0].input == {"term": "Wind"}
    assert result.raw_content_blocks == blocks
    body = json.loads(client.calls[0]["body"])
    assert body["tools"] == [{"name": "lookup", "description": "", "input_schema": {"type": "object"}}]


@pytest.mark.asyncio
async def test_throttling_degrades_to_fast_model():
    client = _FakeBedrockClient(
        [
            _ThrottlingException(),
            _message([{"type": "text", "text": "kurz"}]),
        ]
    )
    adapter = BedrockAdapter(client=client, env={}, max_retries=1, sleep=_no_sleep)

    result = await adapter("r1", _payload(model=DEFAULT_BEDROCK_MODEL))

    assert [c["modelId"] for c in client.calls] == [DEFAULT_BEDROCK_MODEL, FAST_BEDROCK_MODEL]
    assert result.metadata["model"] == FAST_BEDROCK_MODEL


def test_configured_model_id_becomes_default():
    adapter = BedrockAdapter(env={"BEDROCK_MODEL_ID": "eu.anthropic.custom"})

    assert adapter.default_model == "eu.anthropic.custom"
    assert adapter.model_chain("eu.anthropic.custom") == ["eu.anthropic.custom", FAST_BEDROCK_MODEL]
    assert adapter.model_chain(FAST_BEDROCK_MODEL) == [FAST_BEDROCK_MODEL]


def test_missing_region_is_a_configuration_error():
    adapter = BedrockAdapter(env={})

    with pytest.raises(ConfigurationError, match="AWS_REGION"):
        adapter.get_client()


@pytest.mark.asyncio
async def test_body_sends_temperature_or_top_p_never_both():
    client = _FakeBedrockClient([_message([{"type": "text", "text": "a"}]), _message([{"type": "text", "text": "b"}])])
    adapter = BedrockAdapter(client=client, env={}, sleep=_no_sleep)

    await adapter("r1", _payload())
    await adapter("r2", _payload(top_p=0.8))

    default_body, top_p_body = (json.loads(c["body"]) for c in client.calls)
    assert "top_p" not in default_body
    assert "temperature" in default_body
    assert top_p_body["top_p"] == 0.8
    assert "temperature" not in top_p_body


@pytest.mark.asyncio
async def test_configured_model_id_reaches_pro_mode_traffic():
    client = _FakeBedrockClient([_message([{"type": "text", "text": "Pro"}])])
    env = {"BEDROCK_MODEL_ID": "eu.anthropic.custom-arn"}
    processor = TaskProcessor(
        {"bedrock": BedrockAdapter(client=client, env=env, sleep=_no_sleep)},
        env=env,
        fallback=FallbackCoordinator([]),
    )

    response = await processor.handle_message(
        {
            "type": "request",
            "requestId": "r1",
            "data": {"type": "presse", "prompt": "Schreib", "options": {"useBedrock": True}},
        }
    )

    assert response["data"]["content"] == "Pro"
    assert [c["modelId"] for c in client.calls] == ["eu.anthropic.custom-arn"]
