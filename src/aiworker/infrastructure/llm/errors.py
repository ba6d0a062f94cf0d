"""
Provider error taxonomy.

All of these cross the worker boundary as plain strings; the classes only
steer retry and fallback decisions inside the worker.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence, Tuple


class ProviderError(RuntimeError):
    """Base class for every provider-side failure."""

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ConfigurationError(ProviderError):
    """Missing credential or client setting. Fatal, never retried."""


class ValidationError(ProviderError):
    """Adapter returned a malformed or empty result without raising."""


class TransientProviderError(ProviderError):
    """Rate limiting, model warm-up, dropped connections."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class TerminalProviderError(ProviderError):
    """Any other adapter failure; escalates to the fallback chain."""


class FallbackExhaustedError(ProviderError):
    """Every privacy-safe fallback candidate failed."""

    def __init__(self, chain: Sequence[str], failures: List[Tuple[str, BaseException]]):
        last_provider, last_error = failures[-1] if failures else ("", None)
        message = (
            f"Fallback chain [{' -> '.join(chain)}] exhausted; "
            f"last candidate {last_provider or '?'} failed: {last_error or 'no candidates'}"
        )
        super().__init__(message, provider=last_provider or None)
        self.chain = list(chain)
        self.failures = list(failures)


_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504, 529}
_TRANSIENT_MARKERS = (
    "rate limit",
    "ratelimit",
    "too many requests",
    "throttl",
    "overloaded",
    "model is loading",
    "warming up",
    "capacity",
    "timeout",
    "timed out",
    "fetch failed",
    "econnreset",
    "connection reset",
    "connection aborted",
    "socket",
    "temporarily unavailable",
    "service unavailable",
)


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        # botocore ClientError carries the status in its response dict
        meta = response.get("ResponseMetadata") or {}
        value = meta.get("HTTPStatusCode")
        if isinstance(value, int):
            return value
    else:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, (ConfigurationError, ValidationError, TerminalProviderError)):
        return False
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    status = _status_of(exc)
    if status is not None:
        return status in _TRANSIENT_STATUS
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_exception(exc: BaseException, *, provider: str) -> ProviderError:
    """Wrap an SDK/transport exception into the provider taxonomy."""
    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        return exc
    message = f"{provider} error: {exc}" if str(exc) else f"{provider} error: {type(exc).__name__}"
    if is_transient(exc):
        retry_after = getattr(exc, "retry_after", None)
        headers = getattr(getattr(exc, "response", None), "headers", None)
        if retry_after is None and headers is not None:
            try:
                retry_after = float(headers.get("retry-after"))
            except (TypeError, ValueError, AttributeError):
                retry_after = None
        return TransientProviderError(message, provider=provider, retry_after=retry_after)
    return TerminalProviderError(message, provider=provider)
