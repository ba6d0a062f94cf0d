from __future__ import annotations

import os
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from aiworker.application.services.fallback_coordinator import fallback_chain_from_env
from aiworker.application.services.provider_selector import is_privacy_request, select_provider
from aiworker.application.services.task_processor import request_timeout_from_env
from aiworker.domain.task import KNOWN_PROVIDERS, RequestPayload
from aiworker.infrastructure.llm.credentials import credential_status
from aiworker.infrastructure.llm.errors import ConfigurationError
from aiworker.infrastructure.llm.providers import ProviderAdapter, build_adapter_registry

router = APIRouter()

_adapters: Optional[Dict[str, ProviderAdapter]] = None


def _get_adapters() -> Dict[str, ProviderAdapter]:
    global _adapters
    if _adapters is None:
        _adapters = build_adapter_registry(timeout=request_timeout_from_env(os.environ))
    return _adapters


class ProviderListResponse(BaseModel):
    items: List[Dict[str, Any]]
    fallback_chain: List[str]


class SelectRequest(BaseModel):
    type: str = "default"
    options: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SelectResponse(BaseModel):
    provider: str
    model: str
    useBedrock: bool
    privacy: bool


class ProviderTestRequest(BaseModel):
    remote: bool = False
    model: Optional[str] = None


class ProviderTestResponse(BaseModel):
    ok: bool
    provider: str
    model: Optional[str] = None
    latency_ms: int
    message: str
    metrics: Dict[str, Any]


@router.get("/providers", response_model=ProviderListResponse)
def list_providers():
    adapters = _get_adapters()
    items = []
    for row in credential_status():
        adapter = adapters.get(str(row["provider"]))
        items.append(
            {
                **row,
                "default_model": adapter.default_model if adapter else None,
                "metrics": adapter.metrics.to_dict() if adapter else {},
            }
        )
    return ProviderListResponse(items=items, fallback_chain=fallback_chain_from_env(os.environ))


@router.post("/providers/select", response_model=SelectResponse)
def dry_run_selection(req: SelectRequest):
    decision = select_provider(req.type, req.options, req.metadata, dict(os.environ))
    return SelectResponse(
        provider=decision.provider,
        model=decision.model,
        useBedrock=decision.use_bedrock,
        privacy=is_privacy_request(req.options, req.metadata),
    )


@router.post("/providers/{name}/test", response_model=ProviderTestResponse)
async def test_provider(name: str, req: ProviderTestRequest):
    provider = name.strip().lower()
    if provider not in KNOWN_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"unknown provider: {name}")
    adapter = _get_adapters()[provider]

    t0 = time.monotonic()
    model = req.model or adapter.default_model
    try:
        adapter.get_client()
        message = "Client initialized successfully."
        if req.remote:
            payload = RequestPayload(
                type="connection_check",
                messages=[{"role": "user", "content": "Reply with a single word: OK"}],
                system_prompt="You are a connection checker.",
                options={"model": model, "max_tokens": 16, "temperature": 0},
            )
            result = await adapter(f"check-{uuid.uuid4().hex[:8]}", payload)
            model = result.metadata.get("model") or model
            message = f"Remote check success: {(result.content or '').strip()[:80]}"
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(status_code=502, detail=f"test failed: {exc}") from exc

    return ProviderTestResponse(
        ok=True,
        provider=provider,
        model=model,
        latency_ms=int((time.monotonic() - t0) * 1000),
        message=message,
        metrics=adapter.metrics.to_dict(),
    )
