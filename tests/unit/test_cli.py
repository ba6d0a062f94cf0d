import json

from aiworker.domain.task import NormalizedResult
from aiworker.presentation.cli import main as cli_main


def test_select_prints_decision(capsys):
    code = cli_main.run_cli(["select", "--type", "ask"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["provider"] == "bedrock"
    assert out["useBedrock"] is True


def test_select_rejects_bad_json(capsys):
    code = cli_main.run_cli(["select", "--options", "[1]"])

    assert code == 1
    assert "--options must be a JSON object" in capsys.readouterr().err


def test_providers_lists_chain(capsys, monkeypatch):
    monkeypatch.setenv("AIWORKER_FALLBACK_CHAIN", "litellm")

    assert cli_main.run_cli(["providers"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["fallback_chain"] == ["litellm"]
    assert {row["provider"] for row in out["providers"]} >= {"mistral", "bedrock"}


class _FakeProcessor:
    def __init__(self, on_progress=None):
        self.on_progress = on_progress
        self.closed = False

    async def handle_message(self, message):
        self.on_progress({"type": "progress", "requestId": message["requestId"], "data": {"progress": 10}})
        result = NormalizedResult(content="Antwort", metadata={"provider": "mistral"})
        return {"type": "response", "requestId": message["requestId"], "data": result.to_dict()}

    async def aclose(self):
        self.closed = True


def test_run_prompt_prints_response(capsys, monkeypatch):
    monkeypatch.setattr(
        cli_main.TaskProcessor,
        "from_env",
        classmethod(lambda cls, env=None, on_progress=None: _FakeProcessor(on_progress)),
    )

    code = cli_main.run_cli(["run", "--prompt", "Hallo", "--type", "presse", "--progress"])

    captured = capsys.readouterr()
    assert code == 0
    assert json.loads(captured.out)["data"]["content"] == "Antwort"
    assert '"progress": 10' in captured.err


def test_run_needs_input(capsys):
    assert cli_main.run_cli(["run"]) == 1
    assert "--file or --prompt" in capsys.readouterr().err
