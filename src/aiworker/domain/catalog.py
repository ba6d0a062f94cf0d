# src/aiworker/domain/catalog.py
"""Model identifiers shared by the selector, the fallback chain and the adapters."""

from __future__ import annotations

from typing import Dict, Tuple

DEFAULT_PROVIDER = "mistral"
DEFAULT_MODEL = "mistral-medium-latest"

# Pro mode: high-quality Bedrock-hosted model
DEFAULT_BEDROCK_MODEL = "eu.anthropic.claude-sonnet-4-20250514-v1:0"
# Lightweight "ask" requests: fast and cheap
FAST_BEDROCK_MODEL = "eu.anthropic.claude-3-haiku-20240307-v1:0"

PROVIDER_DEFAULT_MODELS: Dict[str, str] = {
    "bedrock": DEFAULT_BEDROCK_MODEL,
    "mistral": DEFAULT_MODEL,
    "litellm": "gpt-oss:120b",
    "ionos": "meta-llama/Llama-3.3-70B-Instruct",
    "openai": "gpt-4o-2024-08-06",
    "claude": "claude-3-7-sonnet-latest",
}

# Models vetted for privacy-mode traffic: self-hosted or EU-hosted only.
PRIVACY_MODELS: Dict[str, str] = {
    "ionos": "meta-llama/Llama-3.3-70B-Instruct",
    "litellm": "gpt-oss:120b",
    "mistral": DEFAULT_MODEL,
}

DEFAULT_FALLBACK_CHAIN: Tuple[str, ...] = ("ionos", "litellm")

# Degraded-capability order used when a model keeps failing transiently.
MISTRAL_MODEL_HIERARCHY: Tuple[str, ...] = (
    "mistral-large-latest",
    "mistral-medium-latest",
    "mistral-small-latest",
)
BEDROCK_MODEL_HIERARCHY: Tuple[str, ...] = (DEFAULT_BEDROCK_MODEL, FAST_BEDROCK_MODEL)
