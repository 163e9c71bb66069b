"""
WordPress REST API client for publishing approved content.

Authenticates with a WordPress application password (Basic auth) against
``{site}/wp-json/wp/v2``. Unpublishing sets a post back to draft; posts are
never deleted, so rollback is always reversible.

Usage:
    async with WordPressClient("https://example.com", "editor", "abcd efgh") as wp:
        post = await wp.publish_post("Title", "<p>Body</p>", status="publish")
        await wp.unpublish_post(post["id"])
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from autopilot.errors import ExternalServiceError
from autopilot.http_client import DEFAULT_TIMEOUT, PROBE_TIMEOUT, HTTPClient, read_body

logger = logging.getLogger("autopilot.wordpress")

VALID_STATUSES = ("publish", "draft", "pending")


class WordPressError(ExternalServiceError):
    """Base exception for WordPress API errors."""


class AuthenticationError(WordPressError):
    """Raised on 401 responses."""


class PermissionDeniedError(WordPressError):
    """Raised on 403 responses."""


class NotFoundError(WordPressError):
    """Raised on 404 responses."""


class ConnectionFailedError(WordPressError):
    """Raised when the site cannot be reached at all."""


@dataclass
class PluginCheck:
    yoast: bool = False
    rank_math: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"yoast": self.yoast, "rank_math": self.rank_math}


def _normalize_post(data: Any, fallback_id: int = 0) -> Dict[str, Any]:
    data = data if isinstance(data, dict) else {}
    return {
        "id": data.get("id") or fallback_id,
        "link": data.get("link") or "",
        "status": data.get("status") or "",
        "title": (data.get("title") or {}).get("rendered", ""),
        "content": (data.get("content") or {}).get("rendered", ""),
    }


def seo_meta(meta_title: str, meta_description: str) -> Dict[str, str]:
    """Meta keys understood by both Yoast and RankMath."""
    return {
        "yoast_wpseo_title": meta_title,
        "yoast_wpseo_metadesc": meta_description,
        "rank_math_title": meta_title,
        "rank_math_description": meta_description,
    }


class WordPressClient(HTTPClient):
    """Async client for one WordPress site."""

    def __init__(
        self,
        site_url: str,
        username: str,
        application_password: str,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self.site_url = site_url.rstrip("/")
        self.username = username
        self.application_password = application_password

    @property
    def api_url(self) -> str:
        return f"{self.site_url}/wp-json/wp/v2"

    @property
    def auth_header(self) -> str:
        """Basic auth header value."""
        creds = f"{self.username}:{self.application_password}"
        token = base64.b64encode(creds.encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        headers["Authorization"] = self.auth_header
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        session = await self._get_session()
        url = f"{self.api_url}{path}"
        kwargs: Dict[str, Any] = {}
        if json_data is not None:
            kwargs["json"] = json_data

        logger.debug("API %s %s", method.upper(), url)
        try:
            async with session.request(method, url, **kwargs) as resp:
                status = resp.status
                body = await read_body(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ConnectionFailedError(f"Cannot reach WordPress site {self.site_url}.") from exc

        if status == 401:
            raise AuthenticationError(
                "WordPress credentials invalid. Check application password.",
                status_code=401,
                response_body=str(body),
            )
        if status == 403:
            raise PermissionDeniedError(
                "WordPress user doesn't have permission to publish.",
                status_code=403,
                response_body=str(body),
            )
        if status == 404:
            raise NotFoundError(
                "WordPress REST API not found. Is it enabled?",
                status_code=404,
                response_body=str(body),
            )
        if status >= 400:
            raise WordPressError(
                f"WordPress API error: {status}",
                status_code=status,
                response_body=str(body),
            )
        return body

    # -- Posts -------------------------------------------------------------

    async def publish_post(
        self,
        title: str,
        content: str,
        status: str = "publish",
        slug: Optional[str] = None,
        excerpt: Optional[str] = None,
        meta: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a post. Returns ``{id, link, status, title, content}``."""
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid post status {status!r}")
        payload: Dict[str, Any] = {"title": title, "content": content, "status": status}
        if slug:
            payload["slug"] = slug
        if excerpt:
            payload["excerpt"] = excerpt
        if meta:
            payload["meta"] = meta
        data = await self._request("POST", "/posts", json_data=payload)
        if not isinstance(data, dict) or not data.get("id"):
            raise WordPressError(
                "WordPress did not return a post id",
                response_body=str(data),
            )
        post = _normalize_post(data)
        logger.info("Created post %s on %s", post["id"], self.site_url)
        return post

    async def update_post(self, post_id: int, **fields: Any) -> Dict[str, Any]:
        data = await self._request("PUT", f"/posts/{post_id}", json_data=fields)
        return _normalize_post(data, fallback_id=post_id)

    async def unpublish_post(self, post_id: int) -> None:
        """Move a post back to draft."""
        await self._request("PUT", f"/posts/{post_id}", json_data={"status": "draft"})
        logger.info("Unpublished post %s on %s", post_id, self.site_url)

    # -- Probes ------------------------------------------------------------

    async def _probe(self, url: str) -> Optional[Any]:
        session = await self._get_session()
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=PROBE_TIMEOUT)) as resp:
                if resp.status >= 400:
                    return None
                return await read_body(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("Probe %s failed: %s", url, exc)
            return None

    async def test_connection(self) -> bool:
        """True when the credentials can read ``/users/me``."""
        return await self._probe(f"{self.api_url}/users/me") is not None

    async def check_plugins(self) -> PluginCheck:
        """Detect Yoast / RankMath from the REST namespaces."""
        data = await self._probe(f"{self.site_url}/wp-json/")
        if not isinstance(data, dict):
            return PluginCheck()
        namespaces = data.get("namespaces") or []
        return PluginCheck(
            yoast=any(ns.startswith("yoast") for ns in namespaces),
            rank_math=any(ns.startswith("rankmath") for ns in namespaces),
        )
