"""
Task processor: one task message in, exactly one response message out.

Idle -> Selecting -> Invoking -> (Succeeded | FallingBack -> Succeeded/Failed)

The primary adapter is chosen from the selector's decision; if it raises or
returns an invalid result, the privacy-safe fallback chain runs with the
caller's original payload. When the chain is exhausted the task fails with
the primary error, the chain error is only logged.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from aiworker.application.services.fallback_coordinator import (
    FallbackCoordinator,
    ensure_valid,
    fallback_chain_from_env,
)
from aiworker.application.services.provider_selector import (
    default_model_for,
    effective_options,
    select_provider,
)
from aiworker.domain.task import (
    EnvelopeKind,
    NormalizedResult,
    ProviderDecision,
    RequestPayload,
    ResponseEnvelope,
    TaskEnvelope,
    progress_message,
)
from aiworker.infrastructure.llm.errors import ConfigurationError, FallbackExhaustedError
from aiworker.utils.logging_config import clear_trace_id, describe_payload, set_trace_id

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_ENV = "AIWORKER_REQUEST_TIMEOUT"
DEFAULT_REQUEST_TIMEOUT = 120.0
TASK_TIMEOUT_ENV = "AIWORKER_TASK_TIMEOUT"
# whole task: primary retries, model hierarchy and the fallback chain
DEFAULT_TASK_TIMEOUT = 840.0

# Self-hosted proxy requested by name bypasses the bedrock/default branch.
NAMED_DIRECT_PROVIDER = "litellm"

Adapter = Callable[[str, RequestPayload], Awaitable[NormalizedResult]]
ProgressCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def _positive_seconds(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", key, raw, default)
        return default
    return value if value > 0 else default


def request_timeout_from_env(env: Mapping[str, str]) -> float:
    return _positive_seconds(env, REQUEST_TIMEOUT_ENV, DEFAULT_REQUEST_TIMEOUT)


def task_timeout_from_env(env: Mapping[str, str]) -> float:
    return _positive_seconds(env, TASK_TIMEOUT_ENV, DEFAULT_TASK_TIMEOUT)


class TaskProcessor:
    def __init__(
        self,
        adapters: Mapping[str, Adapter],
        *,
        env: Optional[Mapping[str, str]] = None,
        fallback: Optional[FallbackCoordinator] = None,
        on_progress: Optional[ProgressCallback] = None,
        task_timeout: Optional[float] = None,
    ):
        # read-only snapshot; later environment changes are not observed
        self._env: Dict[str, str] = dict(os.environ if env is None else env)
        self._adapters = dict(adapters)
        self._fallback = fallback or FallbackCoordinator(fallback_chain_from_env(self._env))
        self.on_progress = on_progress
        self.task_timeout = task_timeout

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "TaskProcessor":
        """Build a processor with its own adapter registry."""
        from aiworker.infrastructure.llm.providers import build_adapter_registry

        snapshot = dict(os.environ if env is None else env)
        adapters = build_adapter_registry(snapshot, timeout=request_timeout_from_env(snapshot))
        return cls(
            adapters,
            env=snapshot,
            on_progress=on_progress,
            task_timeout=task_timeout_from_env(snapshot),
        )

    @property
    def env(self) -> Mapping[str, str]:
        return self._env

    @property
    def adapters(self) -> Mapping[str, Adapter]:
        return self._adapters

    async def aclose(self) -> None:
        for name, adapter in self._adapters.items():
            closer = getattr(adapter, "close", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                logger.warning("Closing %s adapter failed: %s", name, exc)

    async def handle_message(self, message: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Process one wire message; returns the response message, or None for non-requests."""
        try:
            envelope = TaskEnvelope.from_message(dict(message))
        except Exception as exc:
            request_id = message.get("requestId") if isinstance(message, Mapping) else None
            logger.error("Malformed task message %s: %s", request_id, exc)
            if not request_id:
                return None
            return ResponseEnvelope.failure(str(request_id), f"Malformed task message: {exc}").to_message()

        if envelope.kind != EnvelopeKind.REQUEST.value:
            logger.warning("Ignoring message of type %r (requestId=%s)", envelope.kind, envelope.request_id)
            return None

        set_trace_id(envelope.request_id)
        try:
            response = await asyncio.wait_for(self.process(envelope), self.task_timeout)
        except asyncio.TimeoutError:
            logger.error("Task %s exceeded its %ss deadline", envelope.request_id, self.task_timeout)
            response = ResponseEnvelope.failure(
                envelope.request_id, f"Task exceeded its {self.task_timeout:g}s deadline"
            )
        except Exception as exc:
            logger.exception("Unexpected failure while processing %s", envelope.request_id)
            response = ResponseEnvelope.failure(envelope.request_id, str(exc) or type(exc).__name__)
        finally:
            clear_trace_id()
        return response.to_message()

    async def process(self, envelope: TaskEnvelope) -> ResponseEnvelope:
        request_id = envelope.request_id
        payload = envelope.payload or RequestPayload(type="default")
        logger.info("Processing %s: %s", request_id, describe_payload(payload.to_dict()))

        await self._progress(request_id, 10)
        decision = select_provider(payload.type, payload.options, payload.metadata, self._env)
        target = self.dispatch_target(payload, decision)
        primary = payload.with_options(self._primary_options(payload, decision, target))
        logger.info(
            "Dispatching %s to %s (decision=%s/%s)",
            request_id,
            target,
            decision.provider,
            decision.model,
        )

        await self._progress(request_id, 30)
        try:
            result = ensure_valid(await self._invoke(target, request_id, primary), provider=target)
        except Exception as primary_error:
            logger.warning("Primary provider %s failed for %s: %s", target, request_id, primary_error)
            try:
                result = await self._fallback.run(request_id, payload, self._invoke_candidate(request_id))
            except FallbackExhaustedError as chain_error:
                logger.error("Fallback failed for %s: %s", request_id, chain_error)
                return ResponseEnvelope.failure(request_id, str(primary_error) or type(primary_error).__name__)

        await self._progress(request_id, 100)
        logger.info("Completed %s via %s", request_id, result.provider)
        return ResponseEnvelope.success(request_id, result)

    @staticmethod
    def dispatch_target(payload: RequestPayload, decision: ProviderDecision) -> str:
        if payload.provider:
            return payload.provider
        explicit = str(payload.options.get("explicitProvider") or "").strip().lower()
        if explicit == NAMED_DIRECT_PROVIDER:
            return NAMED_DIRECT_PROVIDER
        if decision.use_bedrock:
            return "bedrock"
        return decision.provider

    def _primary_options(self, payload: RequestPayload, decision: ProviderDecision, target: str) -> Dict[str, Any]:
        options = effective_options(payload.options, decision)
        if target != decision.provider:
            # dispatch bypassed the decision; keep its model only if the caller named one
            options["provider"] = target
            options["model"] = payload.options.get("model") or default_model_for(target, self._env)
            options["useBedrock"] = target == "bedrock"
        return options

    async def _invoke(self, provider: str, request_id: str, payload: RequestPayload) -> NormalizedResult:
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for provider '{provider}'", provider=provider)
        return await adapter(request_id, payload)

    def _invoke_candidate(self, request_id: str):
        async def invoke(candidate: str, payload: RequestPayload) -> NormalizedResult:
            return await self._invoke(candidate, request_id, payload)

        return invoke

    async def _progress(self, request_id: str, progress: int) -> None:
        if self.on_progress is None:
            return
        try:
            outcome = self.on_progress(progress_message(request_id, progress))
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as exc:
            # progress is advisory; the task keeps going
            logger.warning("Progress callback failed for %s: %s", request_id, exc)
