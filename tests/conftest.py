# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src to sys.path so `import aiworker` works without an install.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))


@pytest.fixture(autouse=True)
def _isolate_worker_env(monkeypatch):
    """Keep host provider settings out of the tests."""
    for key in (
        "AIWORKER_GLOBAL_MODEL_OVERRIDE",
        "AIWORKER_FALLBACK_CHAIN",
        "AIWORKER_REQUEST_TIMEOUT",
        "AIWORKER_TASK_TIMEOUT",
        "AIWORKER_LOG_LEVEL",
        "BEDROCK_MODEL_ID",
    ):
        monkeypatch.delenv(key, raising=False)
