"""
Provider selection.

``select_provider`` is a pure function of (type, options, metadata, env):
no I/O, no clock, no randomness. The environment is passed in as a
snapshot so one processor sees one consistent configuration.

Rule order (later rules override earlier ones):

1. baseline mistral / mistral-medium-latest
2. pro mode (``options.useBedrock``) -> bedrock
3. use-case pins: ``qa_tools`` -> mistral, ``ask`` -> fast bedrock
4. ``options.explicitProvider``
5. ``AIWORKER_GLOBAL_MODEL_OVERRIDE``, skipped for privacy-flagged requests
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from aiworker.domain.catalog import (
    DEFAULT_MODEL,
    DEFAULT_PROVIDER,
    FAST_BEDROCK_MODEL,
    PROVIDER_DEFAULT_MODELS,
)
from aiworker.domain.task import KNOWN_PROVIDERS, ProviderDecision

logger = logging.getLogger(__name__)

GLOBAL_OVERRIDE_ENV = "AIWORKER_GLOBAL_MODEL_OVERRIDE"

_MISTRAL_NATIVE = re.compile(r"mistral-(?:large|medium|small)")


def is_privacy_request(options: Mapping[str, Any], metadata: Mapping[str, Any]) -> bool:
    return bool(
        options.get("privacyMode")
        or options.get("disableExternalProviders")
        or metadata.get("privacyMode")
        or metadata.get("requiresPrivacy")
    )


def infer_provider_from_model(model: str) -> str:
    """Guess the provider that serves ``model``; unknown ids go to litellm."""
    name = (model or "").strip().lower()
    if not name:
        return "litellm"
    if "anthropic" in name or "claude" in name:
        return "bedrock"
    if "gpt-" in name or "openai" in name:
        return "openai"
    if _MISTRAL_NATIVE.search(name):
        return "mistral"
    if "mistral" in name or "mixtral" in name:
        return "litellm"
    if "llama" in name:
        return "ionos"
    return "litellm"


def parse_global_override(raw: Optional[str]) -> Optional[Tuple[str, str]]:
    """Parse ``provider:model`` or a bare model id. Returns None when unset or unusable."""
    value = (raw or "").strip()
    if not value:
        return None
    head, sep, tail = value.partition(":")
    if sep and head.strip().lower() in KNOWN_PROVIDERS and tail.strip():
        return head.strip().lower(), tail.strip()
    # bare model ids may contain colons themselves (e.g. "gpt-oss:120b")
    return infer_provider_from_model(value), value


BEDROCK_MODEL_ENV = "BEDROCK_MODEL_ID"


def default_model_for(provider: str, env: Optional[Mapping[str, str]] = None) -> str:
    """Default model for ``provider``; ``BEDROCK_MODEL_ID`` replaces the pro-mode model."""
    if provider == "bedrock":
        configured = ((env or {}).get(BEDROCK_MODEL_ENV) or "").strip()
        if configured:
            return configured
    return PROVIDER_DEFAULT_MODELS.get(provider, DEFAULT_MODEL)


def select_provider(
    request_type: str,
    options: Optional[Mapping[str, Any]] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ProviderDecision:
    options = options or {}
    metadata = metadata or {}
    env = env or {}

    provider = DEFAULT_PROVIDER
    model = DEFAULT_MODEL
    use_bedrock = False

    if options.get("useBedrock"):
        provider = "bedrock"
        model = str(options.get("model") or default_model_for("bedrock", env))
        use_bedrock = True

    if request_type == "qa_tools":
        provider = "mistral"
        model = DEFAULT_MODEL
        use_bedrock = False
    elif request_type == "ask":
        provider = "bedrock"
        model = FAST_BEDROCK_MODEL
        use_bedrock = True

    explicit = str(options.get("explicitProvider") or "").strip().lower()
    if explicit:
        if explicit in KNOWN_PROVIDERS:
            provider = explicit
            model = str(options.get("model") or default_model_for(explicit, env))
            use_bedrock = explicit == "bedrock"
        else:
            logger.warning("Ignoring unknown explicitProvider %r", explicit)

    override = parse_global_override(env.get(GLOBAL_OVERRIDE_ENV))
    if override is not None:
        if is_privacy_request(options, metadata):
            logger.info("Global model override skipped for privacy-flagged %s request", request_type)
        else:
            provider, model = override
            use_bedrock = provider == "bedrock"

    decision = ProviderDecision(provider=provider, model=model, use_bedrock=use_bedrock)
    logger.debug("Selected %s for type=%s", decision.to_dict(), request_type)
    return decision


def effective_options(options: Mapping[str, Any], decision: ProviderDecision) -> Dict[str, Any]:
    """
    Merge a decision into caller options. Decision fields are authoritative;
    a caller's conflicting provider/model survives only as a diagnostic.
    """
    merged = dict(options)
    requested_provider = options.get("provider")
    requested_model = options.get("model")
    if requested_provider and requested_provider != decision.provider:
        merged["requested_provider"] = requested_provider
    if requested_model and requested_model != decision.model:
        merged["requested_model"] = requested_model
    merged["provider"] = decision.provider
    merged["model"] = decision.model
    merged["useBedrock"] = decision.use_bedrock
    return merged
