"""
Privacy-safe fallback chain.

Last-resort safety net after the primary adapter failed: walk an ordered
list of self-hosted or EU-hosted providers, one at a time, and return the
first valid result.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from aiworker.domain.catalog import DEFAULT_FALLBACK_CHAIN, PRIVACY_MODELS
from aiworker.domain.task import NormalizedResult, RequestPayload
from aiworker.infrastructure.llm.errors import ConfigurationError, FallbackExhaustedError, ValidationError

logger = logging.getLogger(__name__)

FALLBACK_CHAIN_ENV = "AIWORKER_FALLBACK_CHAIN"

InvokeCandidate = Callable[[str, RequestPayload], Awaitable[NormalizedResult]]


def privacy_safe_chain(entries: Sequence[str]) -> List[str]:
    """Keep only providers with a vetted privacy model, in order."""
    chain: List[str] = []
    for entry in entries:
        name = str(entry).strip().lower()
        if not name:
            continue
        if name not in PRIVACY_MODELS:
            logger.warning("Dropping fallback candidate %r: not a privacy-safe provider", entry)
            continue
        chain.append(name)
    return chain


def fallback_chain_from_env(env: Optional[Mapping[str, str]] = None) -> List[str]:
    raw = (env or {}).get(FALLBACK_CHAIN_ENV) or ""
    chain = privacy_safe_chain(raw.split(","))
    return chain or list(DEFAULT_FALLBACK_CHAIN)


def candidate_options(options: Mapping[str, Any], candidate: str) -> Dict[str, Any]:
    """Deep copy of the caller options pointed at ``candidate`` and its vetted model."""
    model = PRIVACY_MODELS.get(candidate)
    if not model:
        raise ConfigurationError(f"{candidate} is not a privacy-safe fallback provider", provider=candidate)
    merged = copy.deepcopy(dict(options))
    merged.pop("useBedrock", None)
    merged.pop("explicitProvider", None)
    merged["provider"] = candidate
    merged["model"] = model
    return merged


def ensure_valid(result: Optional[NormalizedResult], *, provider: Optional[str] = None) -> NormalizedResult:
    if result is None:
        raise ValidationError("adapter returned no result", provider=provider)
    reason = result.validation_error()
    if reason:
        raise ValidationError(reason, provider=provider)
    return result


class FallbackCoordinator:
    def __init__(self, chain: Optional[Sequence[str]] = None):
        self.chain: List[str] = list(DEFAULT_FALLBACK_CHAIN) if chain is None else privacy_safe_chain(chain)

    async def run(
        self,
        request_id: str,
        payload: RequestPayload,
        invoke: InvokeCandidate,
    ) -> NormalizedResult:
        """
        Try each candidate in order with the caller's original payload.

        Raises FallbackExhaustedError carrying every candidate's failure.
        """
        failures: List[Tuple[str, BaseException]] = []
        for index, candidate in enumerate(self.chain, start=1):
            attempt = payload.with_options(candidate_options(payload.options, candidate))
            logger.info(
                "Fallback %s/%s for %s: trying %s (%s)",
                index,
                len(self.chain),
                request_id,
                candidate,
                attempt.options.get("model"),
            )
            try:
                result = ensure_valid(await invoke(candidate, attempt), provider=candidate)
            except Exception as exc:
                logger.warning("Fallback candidate %s failed for %s: %s", candidate, request_id, exc)
                failures.append((candidate, exc))
                continue
            logger.info("Fallback candidate %s succeeded for %s", candidate, request_id)
            return result

        raise FallbackExhaustedError(self.chain, failures)
