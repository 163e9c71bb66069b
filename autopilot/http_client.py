"""
Shared aiohttp session handling for the external integration clients.

Each client owns one ``aiohttp.ClientSession`` created lazily on first use
and closed by ``close()`` or the async context manager. Retry and error
mapping stay in each client's ``_request`` since every provider has its
own policy.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import aiohttp

from autopilot import __version__

USER_AGENT = f"Practice-Autopilot/{__version__}"
DEFAULT_TIMEOUT = 30
PROBE_TIMEOUT = 10


async def read_body(resp: Any) -> Any:
    """Parse a response body as JSON, falling back to text."""
    try:
        return await resp.json(content_type=None)
    except (json.JSONDecodeError, ValueError, aiohttp.ContentTypeError):
        return await resp.text()


class HTTPClient:
    """Base class with lazily created session and async context management."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=10, ttl_dns_cache=300)
            timeout_config = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(
                headers=self._default_headers(),
                connector=connector,
                timeout=timeout_config,
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
