from __future__ import annotations

from fastapi.testclient import TestClient

from aiworker.api import main as api_main
from aiworker.api.routes import providers as providers_route
from aiworker.infrastructure.llm.providers import build_adapter_registry
from aiworker.infrastructure.llm.providers.openai_compatible_adapter import OpenAICompatibleAdapter


class _FakeCompletions:
    async def create(self, **kwargs):
        return {
            "model": kwargs["model"],
            "choices": [{"message": {"role": "assistant", "content": "OK"}, "finish_reason": "stop"}],
        }


class _FakeOpenAIClient:
    def __init__(self):
        self.completions = _FakeCompletions()
        self.chat = self


def _clear_keys(monkeypatch):
    for key in ("MISTRAL_API_KEY", "IONOS_API_KEY", "LITELLM_API_KEY", "OPENAI_API_KEY", "CLAUDE_API_KEY"):
        monkeypatch.delenv(key, raising=False)


def test_health():
    with TestClient(api_main.app) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_list_providers_reports_configuration(monkeypatch):
    _clear_keys(monkeypatch)
    monkeypatch.setenv("IONOS_API_KEY", "secret")
    monkeypatch.setattr(providers_route, "_adapters", build_adapter_registry({}))

    with TestClient(api_main.app) as client:
        resp = client.get("/api/providers")

    assert resp.status_code == 200
    data = resp.json()
    rows = {row["provider"]: row for row in data["items"]}
    assert rows["ionos"]["configured"] is True
    assert rows["mistral"]["configured"] is False
    assert rows["mistral"]["default_model"] == "mistral-medium-latest"
    assert data["fallback_chain"] == ["ionos", "litellm"]
    assert "secret" not in resp.text


def test_select_dry_run_respects_privacy(monkeypatch):
    monkeypatch.setenv("AIWORKER_GLOBAL_MODEL_OVERRIDE", "openai:gpt-4o")

    with TestClient(api_main.app) as client:
        normal = client.post("/api/providers/select", json={"type": "presse"})
        private = client.post("/api/providers/select", json={"type": "presse", "options": {"privacyMode": True}})

    assert normal.json()["provider"] == "openai"
    assert private.json() == {
        "provider": "mistral",
        "model": "mistral-medium-latest",
        "useBedrock": False,
        "privacy": True,
    }


def test_connection_test_unknown_provider():
    with TestClient(api_main.app) as client:
        resp = client.post("/api/providers/nope/test", json={})

    assert resp.status_code == 404


def test_connection_test_missing_credential(monkeypatch):
    monkeypatch.setattr(providers_route, "_adapters", build_adapter_registry({}))

    with TestClient(api_main.app) as client:
        resp = client.post("/api/providers/claude/test", json={"remote": False})

    assert resp.status_code == 400
    assert "CLAUDE_API_KEY" in resp.json()["detail"]


def test_connection_test_remote_roundtrip(monkeypatch):
    registry = build_adapter_registry({})
    registry["ionos"] = OpenAICompatibleAdapter("ionos", client=_FakeOpenAIClient())
    monkeypatch.setattr(providers_route, "_adapters", registry)

    with TestClient(api_main.app) as client:
        resp = client.post("/api/providers/ionos/test", json={"remote": True})

    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["message"] == "Remote check success: OK"
    assert data["metrics"]["successes"] == 1
    assert data["latency_ms"] >= 0
