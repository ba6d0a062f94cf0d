import json

import pytest

from aiworker.domain.task import RequestPayload, StopReason
from aiworker.infrastructure.api_clients.base import APIError
from aiworker.infrastructure.llm.errors import ConfigurationError, TerminalProviderError, TransientProviderError
from aiworker.infrastructure.llm.providers.mistral_adapter import MistralAdapter


class _FakeClient:
    def __init__(self, replies):
        self.replies = list(replies)
        self.bodies = []

    async def post_json(self, endpoint, body):
        assert endpoint == "chat/completions"
        self.bodies.append(body)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


async def _no_sleep(_delay):
    return None


def _completion(content="Antwort", finish_reason="stop", tool_calls=None, model="mistral-medium-latest"):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "model": model,
        "choices": [{"message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    }


def _payload(**kwargs):
    defaults = dict(
        type="antrag",
        messages=[{"role": "user", "content": "Bitte einen Antrag"}],
        system_prompt="Du bist hilfreich.",
        options={"model": "mistral-medium-latest"},
        metadata={"user": "u1", "provider": "spoofed"},
    )
    defaults.update(kwargs)
    return RequestPayload(**defaults)


@pytest.mark.asyncio
async def test_text_completion_is_normalized():
    client = _FakeClient([_completion()])
    adapter = MistralAdapter(client=client, sleep=_no_sleep)

    result = await adapter("r1", _payload())

    assert result.content == "Antwort"
    assert result.stop_reason == StopReason.STOP
    assert result.raw_content_blocks == [{"type": "text", "text": "Antwort"}]
    assert result.metadata["provider"] == "mistral"
    assert result.metadata["model"] == "mistral-medium-latest"
    assert result.metadata["requestId"] == "r1"
    assert result.metadata["user"] == "u1"
    assert result.metadata["usage"]["completion_tokens"] == 5
    assert "timestamp" in result.metadata

    body = client.bodies[0]
    assert body["messages"][0] == {"role": "system", "content": "Du bist hilfreich."}
    assert body["temperature"] == 0.2
    assert body["top_p"] == 0.85
    assert body["max_tokens"] == 4096


@pytest.mark.asyncio
async def test_caller_sampling_values_win():
    client = _FakeClient([_completion()])
    adapter = MistralAdapter(client=client, sleep=_no_sleep)

    await adapter("r1", _payload(options={"temperature": 0.9, "top_p": 0.5, "max_tokens": 77}))

    body = client.bodies[0]
    assert (body["temperature"], body["top_p"], body["max_tokens"]) == (0.9, 0.5, 77)


@pytest.mark.asyncio
async def test_tool_calls_are_mapped():
    calls = [{"id": "call_1", "type": "function", "function": {"name": "search", "arguments": '{"q": "Klima"}'}}]
    client = _FakeClient([_completion(content="", finish_reason="tool_calls", tool_calls=calls)])
    adapter = MistralAdapter(client=client, sleep=_no_sleep)

    result = await adapter(
        "r1",
        _payload(options={"tools": [{"name": "search", "description": "d", "input_schema": {"type": "object"}}]}),
    )

    assert result.stop_reason == StopReason.TOOL_USE
    assert result.content is None
    assert result.tool_calls[0].name == "search"
    assert result.tool_calls[0].input == {"q": "Klima"}
    assert result.raw_content_blocks == [{"type": "tool_use", "id": "call_1", "name": "search", "input": {"q": "Klima"}}]
    assert result.validation_error() is None

    body = client.bodies[0]
    assert body["tools"][0]["function"]["name"] == "search"
    assert body["tool_choice"] == "auto"


@pytest.mark.asyncio
async def test_tool_results_become_one_message_each():
    client = _FakeClient([_completion()])
    adapter = MistralAdapter(client=client, sleep=_no_sleep)
    messages = [
        {"role": "user", "content": "Suche"},
        {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Ich suche."},
                {"type": "tool_use", "id": "a", "name": "search", "input": {"q": "x"}},
                {"type": "tool_use", "id": "b", "name": "search", "input": {"q": "y"}},
            ],
        },
        {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "a", "content": "Ergebnis A"},
                {"type": "tool_result", "tool_use_id": "b", "content": [{"type": "text", "text": "Ergebnis B"}]},
            ],
        },
    ]

    await adapter("r1", _payload(messages=messages, system_prompt=None))

    sent = client.bodies[0]["messages"]
    assert sent[1]["role"] == "assistant"
    assert [c["id"] for c in sent[1]["tool_calls"]] == ["a", "b"]
    assert json.loads(sent[1]["tool_calls"][0]["function"]["arguments"]) == {"q": "x"}
    assert sent[2] == {"role": "tool", "tool_call_id": "a", "content": "Ergebnis A"}
    assert sent[3] == {"role": "tool", "tool_call_id": "b", "content": "Ergebnis B"}
    assert len(sent) == 4


@pytest.mark.asyncio
async def test_transient_errors_retry_then_walk_model_hierarchy():
    client = _FakeClient(
        [
            APIError(429, "rate limited"),
            APIError(503, "unavailable"),
            _completion(model="mistral-small-latest"),
        ]
    )
    adapter = MistralAdapter(client=client, max_retries=2, sleep=_no_sleep)

    result = await adapter("r1", _payload(options={"model": "mistral-medium-latest"}))

    assert [b["model"] for b in client.bodies] == [
        "mistral-medium-latest",
        "mistral-medium-latest",
        "mistral-small-latest",
    ]
    assert result.metadata["model"] == "mistral-small-latest"
    assert adapter.metrics.attempts == 3
    assert adapter.metrics.failures == 2
    assert adapter.metrics.successes == 1
    assert adapter.metrics.retries == 1


@pytest.mark.asyncio
async def test_exhausted_hierarchy_raises_transient_error():
    client = _FakeClient([APIError(503, "down")] * 2)
    adapter = MistralAdapter(client=client, max_retries=2, sleep=_no_sleep)

    with pytest.raises(TransientProviderError):
        await adapter("r1", _payload(options={"model": "mistral-small-latest"}))

    assert adapter.metrics.last_failure_reason.startswith("mistral error")


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    client = _FakeClient([APIError(400, "bad request")])
    adapter = MistralAdapter(client=client, sleep=_no_sleep)

    with pytest.raises(TerminalProviderError):
        await adapter("r1", _payload())

    assert len(client.bodies) == 1


@pytest.mark.asyncio
async def test_retry_after_header_sets_delay():
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    client = _FakeClient([APIError(429, "slow down", retry_after=7), _completion()])
    adapter = MistralAdapter(client=client, sleep=record_sleep)

    await adapter("r1", _payload())

    assert delays == [7.0]


@pytest.mark.asyncio
async def test_missing_key_raises_configuration_error_on_first_use():
    adapter = MistralAdapter(env={})

    with pytest.raises(ConfigurationError, match="MISTRAL_API_KEY"):
        await adapter("r1", _payload())


@pytest.mark.asyncio
async def test_pdf_documents_are_flattened(monkeypatch):
    from aiworker.infrastructure.llm import documents

    monkeypatch.setattr(documents, "extract_pdf_text", lambda data, name, **kw: "Seite 1")
    client = _FakeClient([_completion()])
    adapter = MistralAdapter(client=client, sleep=_no_sleep)
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "document", "source": {"media_type": "application/pdf", "data": "JVBERi0=", "name": "a.pdf"}},
                {"type": "text", "text": "Fasse zusammen"},
            ],
        }
    ]

    await adapter("r1", _payload(messages=messages))

    user = client.bodies[0]["messages"][1]
    assert user == {"role": "user", "content": "[PDF-Inhalt: a.pdf]\n\nSeite 1\nFasse zusammen"}


@pytest.mark.asyncio
async def test_pdf_is_extracted_once_off_the_event_loop(monkeypatch):
    import asyncio
    import threading

    from aiworker.infrastructure.llm import documents

    loop_thread = threading.get_ident()
    extraction_threads = []

    def _extract(data, name, **kw):
        extraction_threads.append(threading.get_ident())
        return "Seite 1"

    monkeypatch.setattr(documents, "extract_pdf_text", _extract)
    client = _FakeClient([asyncio.TimeoutError()] * 9)
    adapter = MistralAdapter(client=client, sleep=_no_sleep)
    pdf = {"type": "document", "source": {"media_type": "application/pdf", "data": "JVBERi0=", "name": "a.pdf"}}
    payload = _payload(messages=[{"role": "user", "content": [pdf]}], options={"model": "mistral-large-latest"})

    with pytest.raises(TransientProviderError):
        await adapter("r1", payload)

    assert len(client.bodies) == 9
    assert len(extraction_threads) == 1
    assert extraction_threads[0] != loop_thread
    assert payload.messages[0]["content"] == [pdf]


@pytest.mark.asyncio
async def test_empty_model_chain_is_a_terminal_error():
    class _NoModels(MistralAdapter):
        def model_chain(self, requested):
            return []

    client = _FakeClient([])
    adapter = _NoModels(client=client, sleep=_no_sleep)

    with pytest.raises(TerminalProviderError, match="no model to try"):
        await adapter("r1", _payload())

    assert client.bodies == []
