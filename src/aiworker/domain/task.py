# src/aiworker/domain/task.py
"""
Task and result domain models.

Contains the data structures exchanged across the worker boundary:
- TaskEnvelope: one request consumed by a worker context
- ResponseEnvelope: the single response/error emitted per task
- NormalizedResult: provider-independent model output
- ProviderDecision: provider/model chosen for one task
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Provider(str, Enum):
    """Supported inference providers."""

    BEDROCK = "bedrock"
    MISTRAL = "mistral"
    LITELLM = "litellm"
    IONOS = "ionos"
    OPENAI = "openai"
    CLAUDE = "claude"


KNOWN_PROVIDERS = frozenset(p.value for p in Provider)


class StopReason(str, Enum):
    STOP = "stop"
    TOOL_USE = "tool_use"
    OTHER = "other"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "StopReason":
        """Map a backend finish/stop signal onto the shared enum."""
        text = str(raw or "").strip().lower().replace("-", "_")
        if text in {"", "stop", "end_turn", "stop_sequence", "complete", "completed"}:
            return cls.STOP
        if text in {"tool_use", "tool_calls", "function_call", "tool_call"}:
            return cls.TOOL_USE
        return cls.OTHER


class EnvelopeKind(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    ERROR = "error"
    PROGRESS = "progress"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ProviderDecision:
    """Provider/model selected for a single task. Never mutated after return."""

    provider: str
    model: str
    use_bedrock: bool = False

    def __post_init__(self) -> None:
        if self.use_bedrock and self.provider != Provider.BEDROCK.value:
            raise ValueError("use_bedrock requires provider 'bedrock'")

    def to_dict(self) -> Dict[str, Any]:
        return {"provider": self.provider, "model": self.model, "useBedrock": self.use_bedrock}


@dataclass
class ToolCall:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "input": self.input}

    def to_block(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class NormalizedResult:
    """
    Single response shape every provider adapter produces.

    Invariant: success implies non-empty content, or stop_reason tool_use
    with at least one tool call.
    """

    content: Optional[str]
    stop_reason: StopReason = StopReason.STOP
    tool_calls: List[ToolCall] = field(default_factory=list)
    raw_content_blocks: List[Dict[str, Any]] = field(default_factory=list)
    success: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def provider(self) -> Optional[str]:
        return self.metadata.get("provider")

    def validation_error(self) -> Optional[str]:
        """Return a readable reason when the result breaks the contract."""
        if self.stop_reason == StopReason.TOOL_USE and not self.tool_calls:
            return "tool_use indicated but no tool_calls provided"
        if not self.success:
            return "result is not marked successful"
        if self.content:
            return None
        if self.stop_reason == StopReason.TOOL_USE:
            return None
        return "empty content"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "content": self.content,
            "stop_reason": self.stop_reason.value,
            "raw_content_blocks": self.raw_content_blocks,
            "success": self.success,
            "metadata": self.metadata,
        }
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedResult":
        calls = [
            ToolCall(id=str(tc.get("id") or ""), name=str(tc.get("name") or ""), input=tc.get("input") or {})
            for tc in (data.get("tool_calls") or [])
        ]
        return cls(
            content=data.get("content"),
            stop_reason=StopReason.normalize(data.get("stop_reason")),
            tool_calls=calls,
            raw_content_blocks=list(data.get("raw_content_blocks") or []),
            success=bool(data.get("success", True)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class RequestPayload:
    """
    Request body carried by a task.

    ``provider`` is the route-level override and is distinct from
    ``options["explicitProvider"]``.
    """

    type: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    system_prompt: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    provider: Optional[str] = None

    def with_options(self, options: Dict[str, Any]) -> "RequestPayload":
        """Return a copy carrying ``options``; the original is left untouched."""
        return RequestPayload(
            type=self.type,
            messages=copy.deepcopy(self.messages),
            system_prompt=self.system_prompt,
            options=options,
            metadata=copy.deepcopy(self.metadata),
            provider=self.provider,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "messages": self.messages,
            "options": self.options,
            "metadata": self.metadata,
        }
        if self.system_prompt is not None:
            data["systemPrompt"] = self.system_prompt
        if self.provider:
            data["provider"] = self.provider
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestPayload":
        messages = data.get("messages")
        if not messages and data.get("prompt"):
            messages = [{"role": "user", "content": data["prompt"]}]
        return cls(
            type=str(data.get("type") or "default"),
            messages=list(messages or []),
            system_prompt=data.get("systemPrompt"),
            options=dict(data.get("options") or {}),
            metadata=dict(data.get("metadata") or {}),
            provider=(str(data.get("provider")).strip().lower() or None) if data.get("provider") else None,
        )


@dataclass
class TaskEnvelope:
    kind: str
    request_id: str
    payload: Optional[RequestPayload] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TaskEnvelope":
        """Parse the wire form ``{type, requestId, data}``."""
        kind = str(message.get("type") or "")
        request_id = str(message.get("requestId") or "")
        payload = None
        if kind == EnvelopeKind.REQUEST.value:
            payload = RequestPayload.from_dict(message.get("data") or {})
        return cls(kind=kind, request_id=request_id, payload=payload)

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "requestId": self.request_id,
            "data": self.payload.to_dict() if self.payload else None,
        }


@dataclass
class ResponseEnvelope:
    kind: EnvelopeKind
    request_id: str
    result: Optional[NormalizedResult] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, request_id: str, result: NormalizedResult) -> "ResponseEnvelope":
        return cls(kind=EnvelopeKind.RESPONSE, request_id=request_id, result=result)

    @classmethod
    def failure(cls, request_id: str, message: str) -> "ResponseEnvelope":
        return cls(kind=EnvelopeKind.ERROR, request_id=request_id, error=message or "Unknown error")

    def to_message(self) -> Dict[str, Any]:
        if self.kind == EnvelopeKind.RESPONSE and self.result is not None:
            return {"type": "response", "requestId": self.request_id, "data": self.result.to_dict()}
        return {"type": "error", "requestId": self.request_id, "error": self.error or "Unknown error"}


def progress_message(request_id: str, progress: int) -> Dict[str, Any]:
    return {
        "type": EnvelopeKind.PROGRESS.value,
        "requestId": request_id,
        "data": {"progress": max(0, min(int(progress), 100))},
    }
