"""
Provider adapter base class.

An adapter owns exactly one lazily-built client, translates the normalized
request into its backend's wire format, and maps the reply back into a
NormalizedResult. Transient failures are retried here with exponential
backoff; where a provider defines a model hierarchy the adapter walks down
it before giving up.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from aiworker.domain.task import NormalizedResult, RequestPayload, StopReason, ToolCall, utc_timestamp
from aiworker.infrastructure.llm.credentials import ResolvedCredential, resolve_credential
from aiworker.infrastructure.llm.documents import extract_documents
from aiworker.infrastructure.llm.errors import (
    ProviderError,
    TerminalProviderError,
    TransientProviderError,
    classify_exception,
)
from aiworker.infrastructure.llm.generation_config import GenerationConfig, resolve_generation_config
from aiworker.utils.logging_config import VERBOSE, describe_payload

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
MAX_RETRY_DELAY_SECONDS = 30.0

# Keys an adapter owns in result metadata; request metadata cannot shadow them.
_OWNED_METADATA_KEYS = ("provider", "model", "timestamp", "requestId", "usage")


@dataclass
class ConnectionMetrics:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    last_failure_time: Optional[float] = None
    last_failure_reason: Optional[str] = None

    def record_failure(self, reason: str) -> None:
        self.failures += 1
        self.last_failure_time = time.time()
        self.last_failure_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def merge_metadata(request_metadata: Optional[Mapping[str, Any]], owned: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(request_metadata or {})
    for key in _OWNED_METADATA_KEYS:
        merged.pop(key, None)
    merged.update({k: v for k, v in owned.items() if v is not None})
    return merged


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def as_dict(obj: Any) -> Dict[str, Any]:
    """Turn an SDK response object into a plain dict."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(vars(obj))


def build_result(
    *,
    text: Optional[str],
    finish_reason: Optional[str],
    tool_calls: Sequence[ToolCall] = (),
    blocks: Optional[List[Dict[str, Any]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> NormalizedResult:
    """Assemble a NormalizedResult, synthesizing content blocks when the backend has none."""
    calls = list(tool_calls)
    stop_reason = StopReason.normalize(finish_reason)
    if calls and stop_reason == StopReason.STOP:
        stop_reason = StopReason.TOOL_USE
    meta = dict(metadata or {})
    if stop_reason == StopReason.OTHER and finish_reason:
        meta["finish_reason"] = finish_reason

    if blocks is None:
        blocks = []
        if text:
            blocks.append({"type": "text", "text": text})
        blocks.extend(call.to_block() for call in calls)

    return NormalizedResult(
        content=text or None,
        stop_reason=stop_reason,
        tool_calls=calls,
        raw_content_blocks=blocks,
        success=True,
        metadata=meta,
    )


class ProviderAdapter(ABC):
    """Base adapter: lazy client, retries, model hierarchy, metadata."""

    name: str = ""
    default_model: str = ""
    model_hierarchy: Sequence[str] = ()
    max_retries: int = 3
    base_delay: float = 1.0
    # backends without native document input get PDF text instead
    extracts_documents: bool = False

    def __init__(
        self,
        *,
        env: Optional[Mapping[str, str]] = None,
        client: Any = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._env = env
        self._client = client
        self.timeout = timeout
        if max_retries is not None:
            self.max_retries = max(1, int(max_retries))
        if base_delay is not None:
            self.base_delay = max(0.0, float(base_delay))
        self._sleep = sleep
        self.metrics = ConnectionMetrics()

    def get_client(self) -> Any:
        """Return the adapter's client, building it on first use."""
        if self._client is None:
            credential = resolve_credential(self.name, self._env)
            self._client = self._build_client(credential)
            logger.info("Initialized %s client", self.name)
        return self._client

    @abstractmethod
    def _build_client(self, credential: ResolvedCredential) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def _invoke(
        self,
        client: Any,
        request_id: str,
        payload: RequestPayload,
        model: str,
        config: GenerationConfig,
    ) -> NormalizedResult:
        """Run one backend call; raise on failure."""
        raise NotImplementedError

    def model_chain(self, requested: str) -> List[str]:
        hierarchy = list(self.model_hierarchy)
        if requested in hierarchy:
            return hierarchy[hierarchy.index(requested):]
        return [requested]

    def generation_config(self, payload: RequestPayload) -> GenerationConfig:
        return resolve_generation_config(
            provider=self.name,
            request_type=payload.type,
            options=payload.options,
            metadata=payload.metadata,
            system_prompt=payload.system_prompt,
        )

    async def prepare(self, payload: RequestPayload) -> RequestPayload:
        """Run once per request, before any attempt; extraction happens off the event loop."""
        if not self.extracts_documents:
            return payload
        messages = await asyncio.to_thread(extract_documents, payload.messages)
        return replace(payload, messages=messages)

    async def __call__(self, request_id: str, payload: RequestPayload) -> NormalizedResult:
        return await self.execute(request_id, payload)

    async def execute(self, request_id: str, payload: RequestPayload) -> NormalizedResult:
        client = self.get_client()
        payload = await self.prepare(payload)
        requested = str(payload.options.get("model") or self.default_model)
        config = self.generation_config(payload)
        logger.info(
            "[%s] request %s type=%s model=%s temperature=%s top_p=%s max_tokens=%s",
            self.name,
            request_id,
            payload.type,
            requested,
            config.temperature,
            config.top_p,
            config.max_tokens,
        )
        logger.log(VERBOSE, "[%s] payload %s", self.name, describe_payload(payload.to_dict()))

        models = self.model_chain(requested)
        last_error: Optional[ProviderError] = None
        for position, model in enumerate(models):
            if position > 0:
                logger.warning(
                    "[%s] %s kept failing for %s, degrading to %s",
                    self.name,
                    models[position - 1],
                    request_id,
                    model,
                )
            for attempt in range(1, self.max_retries + 1):
                if attempt > 1:
                    delay = self._retry_delay(attempt, last_error)
                    self.metrics.retries += 1
                    logger.info(
                        "[%s] retry %s/%s for %s in %.1fs",
                        self.name,
                        attempt,
                        self.max_retries,
                        request_id,
                        delay,
                    )
                    await self._sleep(delay)

                self.metrics.attempts += 1
                try:
                    result = await self._invoke(client, request_id, payload, model, config)
                except Exception as exc:
                    error = classify_exception(exc, provider=self.name)
                    self.metrics.record_failure(str(error))
                    if not isinstance(error, TransientProviderError):
                        logger.error("[%s] non-retryable error for %s: %s", self.name, request_id, error)
                        if error is exc:
                            raise
                        raise error from exc
                    last_error = error
                    logger.warning(
                        "[%s] transient error for %s on attempt %s: %s",
                        self.name,
                        request_id,
                        attempt,
                        error,
                    )
                    continue

                self.metrics.successes += 1
                result.metadata = merge_metadata(
                    payload.metadata,
                    {
                        **result.metadata,
                        "provider": self.name,
                        "model": result.metadata.get("model") or model,
                        "timestamp": utc_timestamp(),
                        "requestId": request_id,
                    },
                )
                logger.log(VERBOSE, "[%s] result %s", self.name, describe_payload(result.to_dict()))
                return result

        if last_error is None:
            raise TerminalProviderError(f"no model to try for {request_id}", provider=self.name)
        logger.error("[%s] giving up on %s after %s model(s): %s", self.name, request_id, len(models), last_error)
        raise last_error

    def _retry_delay(self, attempt: int, error: Optional[ProviderError]) -> float:
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            return min(float(retry_after), MAX_RETRY_DELAY_SECONDS)
        delay = self.base_delay * (2 ** (attempt - 2))
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return min(max(0.0, delay + jitter), MAX_RETRY_DELAY_SECONDS)

    async def close(self) -> None:
        client, self._client = self._client, None
        closer = getattr(client, "close", None)
        if closer is None:
            return
        outcome = closer()
        if asyncio.iscoroutine(outcome):
            await outcome
