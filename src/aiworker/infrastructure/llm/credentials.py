"""Provider credential lookup.

Every provider reads exactly one credential from the environment. Lookups
happen when an adapter first builds its client, never at import time, so a
deployment lacking one provider's key still boots and only that provider
fails.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from loguru import logger

from aiworker.infrastructure.llm.errors import ConfigurationError


@dataclass(frozen=True)
class CredentialSpec:
    provider: str
    api_key_env: Optional[str]
    base_url_env: Optional[str] = None
    default_base_url: Optional[str] = None


CREDENTIALS: Dict[str, CredentialSpec] = {
    # Bedrock authenticates through the standard AWS chain; the region is the
    # one setting it cannot run without.
    "bedrock": CredentialSpec("bedrock", None, base_url_env="AWS_REGION"),
    "mistral": CredentialSpec(
        "mistral", "MISTRAL_API_KEY", "MISTRAL_BASE_URL", "https://api.mistral.ai/v1"
    ),
    "litellm": CredentialSpec("litellm", "LITELLM_API_KEY", "LITELLM_BASE_URL"),
    "ionos": CredentialSpec(
        "ionos",
        "IONOS_API_KEY",
        "IONOS_BASE_URL",
        "https://openai.inference.de-txl.ionos.com/v1",
    ),
    "openai": CredentialSpec(
        "openai", "OPENAI_API_KEY", "OPENAI_BASE_URL", "https://api.openai.com/v1"
    ),
    "claude": CredentialSpec("claude", "CLAUDE_API_KEY"),
}


@dataclass(frozen=True)
class ResolvedCredential:
    provider: str
    api_key: Optional[str]
    base_url: Optional[str]


def _env(env: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if env is None else env


def resolve_credential(provider: str, env: Optional[Mapping[str, str]] = None) -> ResolvedCredential:
    """Return the credential for ``provider`` or raise ConfigurationError."""
    spec = CREDENTIALS.get(provider)
    if spec is None:
        raise ConfigurationError(f"unknown provider: {provider}", provider=provider)
    source = _env(env)

    base_url = None
    if spec.base_url_env:
        base_url = (source.get(spec.base_url_env) or "").strip() or spec.default_base_url

    if provider == "bedrock":
        region = base_url or (source.get("AWS_DEFAULT_REGION") or "").strip()
        if not region:
            raise ConfigurationError(
                "Bedrock provider is not configured. Set AWS_REGION.", provider=provider
            )
        return ResolvedCredential(provider=provider, api_key=None, base_url=region)

    api_key = (source.get(spec.api_key_env or "") or "").strip()
    if not api_key:
        logger.warning(f"{spec.api_key_env} is not set; provider {provider} is unavailable.")
        raise ConfigurationError(
            f"{provider} provider is not configured. Check {spec.api_key_env} environment variable.",
            provider=provider,
        )
    if spec.base_url_env and not base_url:
        raise ConfigurationError(
            f"{provider} provider is not configured. Check {spec.base_url_env} environment variable.",
            provider=provider,
        )
    return ResolvedCredential(provider=provider, api_key=api_key, base_url=base_url)


def credential_status(env: Optional[Mapping[str, str]] = None) -> List[Dict[str, object]]:
    """Report which providers have their credential present, without secrets."""
    rows: List[Dict[str, object]] = []
    for name, spec in CREDENTIALS.items():
        try:
            resolved = resolve_credential(name, env)
            configured = True
            base_url = resolved.base_url
        except ConfigurationError:
            configured = False
            base_url = None
        rows.append(
            {
                "provider": name,
                "api_key_env": spec.api_key_env,
                "configured": configured,
                "base_url": base_url,
            }
        )
    return rows
