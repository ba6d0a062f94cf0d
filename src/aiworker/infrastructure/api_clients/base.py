"""
Shared async HTTP API client.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

logger = logging.getLogger(__name__)


class APIError(RuntimeError):
    """Non-2xx reply. ``status`` and ``retry_after`` drive retry classification."""

    def __init__(self, status: int, message: str, *, retry_after: Optional[float] = None):
        super().__init__(f"API error {status}: {message}")
        self.status = status
        self.retry_after = retry_after


class APIClient:
    """Async JSON HTTP client with bearer auth and one reusable session."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 120,
        user_agent: str = "aiworker/1.0",
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = ClientTimeout(total=timeout)
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=headers)
        return self._session

    async def post_json(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST ``body`` as JSON; raise APIError on any non-2xx status."""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        session = await self._get_session()
        async with session.post(url, json=body) as response:
            if 200 <= response.status < 300:
                return await response.json()
            retry_after = response.headers.get("Retry-After")
            text = await response.text()
            logger.error(f"API error {response.status} for {url}: {text[:200]}")
            try:
                delay = float(retry_after) if retry_after else None
            except (TypeError, ValueError):
                delay = None
            raise APIError(response.status, text[:500], retry_after=delay)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
