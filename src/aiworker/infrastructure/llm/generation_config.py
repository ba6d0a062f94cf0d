"""Use-case aware sampling defaults.

Caller-supplied ``temperature``/``top_p``/``max_tokens`` always win; these
defaults only fill the gaps. Structure-sensitive types (JSON configs,
motions, summaries) run cold, creative social copy runs warmer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.35

# Type-level temperatures shared by every provider.
TYPE_TEMPERATURES: Dict[str, float] = {
    "presse": 0.3,
    "antrag": 0.2,
    "antragsversteher": 0.2,
    "wahlprogramm": 0.2,
    "rede": 0.3,
    "text_adjustment": 0.3,
    "web_search_summary": 0.2,
    "generator_config": 0.1,
    "crawler_agent": 0.1,
    "qa_tools": 0.3,
    "leichte_sprache": 0.3,
    "image_picker": 0.1,
}

# Providers whose models tolerate, or need, a different baseline.
PROVIDER_TEMPERATURE_SHIFT: Dict[str, float] = {
    "claude": 0.1,
    "bedrock": 0.1,
    "ionos": -0.05,
    "litellm": -0.05,
}

SOCIAL_PLATFORM_TEMPERATURES = (
    ("pressemitteilung", 0.3),
    ("linkedin", 0.4),
    ("twitter", 0.5),
    ("facebook", 0.6),
    ("instagram", 0.7),
    ("reelScript", 0.6),
)

SOCIAL_PLATFORM_TOP_P = (
    ("pressemitteilung", 0.85),
    ("linkedin", 0.9),
    ("twitter", 0.9),
    ("facebook", 0.95),
    ("instagram", 0.95),
    ("reelScript", 0.95),
    ("actionIdeas", 0.95),
)

SOCIAL_PLATFORM_MAX_TOKENS: Dict[str, int] = {
    "pressemitteilung": 600,
    "twitter": 150,
    "linkedin": 400,
    "facebook": 350,
    "instagram": 350,
    "reelScript": 500,
    "actionIdeas": 500,
}

_FORMAL_KEYWORDS = ("pressemitteilung", "förmlich", "sachlich", "presseverteiler", "journalistisch")


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float
    top_p: float
    max_tokens: int

    def to_dict(self) -> Dict[str, Any]:
        return {"temperature": self.temperature, "top_p": self.top_p, "max_tokens": self.max_tokens}


def _platforms(metadata: Mapping[str, Any]) -> list:
    raw = metadata.get("platforms")
    if isinstance(raw, (list, tuple)):
        return [str(p) for p in raw]
    return []


def _first_match(platforms: Iterable[str], table) -> Optional[float]:
    names = set(platforms)
    for platform, value in table:
        if platform in names:
            return value
    return None


def default_temperature(
    request_type: str,
    *,
    provider: str = "mistral",
    platforms: Optional[list] = None,
    system_prompt: Optional[str] = None,
) -> float:
    if request_type == "social":
        matched = _first_match(platforms or [], SOCIAL_PLATFORM_TEMPERATURES)
        if matched is not None and matched <= 0.3:
            return matched
        prompt = (system_prompt or "").lower()
        if any(keyword in prompt for keyword in _FORMAL_KEYWORDS):
            return 0.3
        base = matched if matched is not None else 0.6
    else:
        base = TYPE_TEMPERATURES.get(request_type, DEFAULT_TEMPERATURE)
    shifted = base + PROVIDER_TEMPERATURE_SHIFT.get(provider, 0.0)
    return round(min(max(shifted, 0.0), 1.0), 2)


def default_top_p(request_type: str, temperature: float, platforms: Optional[list] = None) -> float:
    if request_type == "social":
        matched = _first_match(platforms or [], SOCIAL_PLATFORM_TOP_P)
        if matched is not None:
            return matched
    if temperature <= 0.3:
        return 0.85
    if temperature <= 0.5:
        return 0.9
    return 1.0


def default_max_tokens(request_type: str, platforms: Optional[list] = None) -> int:
    if request_type == "social" and platforms:
        if len(platforms) == 1:
            return SOCIAL_PLATFORM_MAX_TOKENS.get(platforms[0], 800)
        return 800
    return DEFAULT_MAX_TOKENS


def resolve_generation_config(
    *,
    provider: str,
    request_type: str,
    options: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]] = None,
    system_prompt: Optional[str] = None,
) -> GenerationConfig:
    platforms = _platforms(metadata or {})

    temperature = options.get("temperature")
    if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
        temperature = default_temperature(
            request_type, provider=provider, platforms=platforms, system_prompt=system_prompt
        )

    top_p = options.get("top_p")
    if not isinstance(top_p, (int, float)) or isinstance(top_p, bool):
        top_p = default_top_p(request_type, float(temperature), platforms)

    max_tokens = options.get("max_tokens")
    if not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0:
        max_tokens = default_max_tokens(request_type, platforms)

    return GenerationConfig(temperature=float(temperature), top_p=float(top_p), max_tokens=int(max_tokens))
