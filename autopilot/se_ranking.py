"""
SE Ranking keyword research client.

Bulk keyword research, competitor keyword lookup, and rank-tracking
project management against https://api.seranking.com.

Retry policy (per request):
    429  sleep Retry-After (seconds or HTTP-date, default 1 s) and retry, up to
         ``max_rate_limit_retries`` times (None = unbounded)
    401  fatal, never retried
    500  one retry after 2 s, then fatal
    other non-2xx  fatal

Usage:
    async with SERankingClient(api_key) as client:
        data = await client.bulk_keyword_research(["dentist near me", ...])
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from autopilot.config import DEFAULT_MAX_RATE_LIMIT_RETRIES
from autopilot.errors import ExternalServiceError
from autopilot.http_client import DEFAULT_TIMEOUT, HTTPClient, read_body
from autopilot.models import KeywordData, PositionData

logger = logging.getLogger("autopilot.se_ranking")

BASE_URL = "https://api.seranking.com"
BATCH_DELAY = 0.5  # seconds
SERVER_ERROR_RETRY_DELAY = 2.0  # seconds
KEYWORD_BATCH_SIZE = 10
PROJECT_KEYWORD_BATCH_SIZE = 50
MAX_BULK_SEEDS = 100

SleepFunc = Callable[[float], Awaitable[Any]]


class KeywordResearchError(ExternalServiceError):
    """Base exception for SE Ranking API errors."""


class AuthenticationError(KeywordResearchError):
    """Raised when the API key is rejected (401)."""


class RateLimitError(KeywordResearchError):
    """Raised when 429 responses exceed the configured retry ceiling."""


def _parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> float:
    if not value:
        return 1.0
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 1.0
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((retry_at - now).total_seconds(), 0.0)


def _map_keyword(raw: Dict[str, Any]) -> KeywordData:
    return KeywordData(
        keyword=raw.get("keyword") or "",
        search_volume=raw.get("search_volume") or 0,
        difficulty=raw.get("keyword_difficulty") or 0,
        cpc=raw.get("cpc") or 0.0,
        competition=raw.get("competition") or 0.0,
    )


def _map_position(raw: Dict[str, Any]) -> PositionData:
    return PositionData(
        keyword=raw.get("keyword") or "",
        position=raw.get("position") or 0,
        previous_position=raw.get("previous_position"),
        url=raw.get("url") or "",
        search_volume=raw.get("search_volume") or 0,
    )


def _rows(body: Any) -> List[Dict[str, Any]]:
    if isinstance(body, dict):
        body = body.get("data", [])
    return [row for row in body or [] if isinstance(row, dict)]


class SERankingClient(HTTPClient):
    """Async client for the SE Ranking data API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = BASE_URL,
        max_rate_limit_retries: Optional[int] = DEFAULT_MAX_RATE_LIMIT_RETRIES,
        timeout: int = DEFAULT_TIMEOUT,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("SE_RANKING_API_KEY is required")
        super().__init__(timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_rate_limit_retries = max_rate_limit_retries
        self._sleep = sleep

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        headers["X-Api-Key"] = self.api_key
        headers["Content-Type"] = "application/json"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        rate_limit_hits = 0
        server_error_retried = False

        while True:
            kwargs: Dict[str, Any] = {}
            if json_data is not None:
                kwargs["json"] = json_data
            try:
                async with session.request(method, url, **kwargs) as resp:
                    status = resp.status
                    retry_after = resp.headers.get("Retry-After")
                    body = await read_body(resp)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise KeywordResearchError(f"Cannot reach SE Ranking: {exc}") from exc

            if status == 429:
                rate_limit_hits += 1
                if (
                    self.max_rate_limit_retries is not None
                    and rate_limit_hits > self.max_rate_limit_retries
                ):
                    raise RateLimitError(
                        f"SE Ranking rate limit persisted after {self.max_rate_limit_retries} retries",
                        status_code=429,
                        response_body=str(body),
                    )
                delay = _parse_retry_after(retry_after)
                logger.warning(
                    "SE Ranking rate limited on %s %s, retrying in %.1fs", method, path, delay
                )
                await self._sleep(delay)
                continue

            if status == 401:
                raise AuthenticationError(
                    "Invalid SE Ranking API key. Check SE_RANKING_API_KEY.",
                    status_code=401,
                    response_body=str(body),
                )

            if status == 500 and not server_error_retried:
                server_error_retried = True
                logger.warning("SE Ranking 500 on %s %s, retrying once", method, path)
                await self._sleep(SERVER_ERROR_RETRY_DELAY)
                continue

            if status >= 400:
                raise KeywordResearchError(
                    f"SE Ranking API error: {status}",
                    status_code=status,
                    response_body=str(body),
                )
            return body

    # -- Research ------------------------------------------------------------

    async def keyword_research(self, keywords: List[str]) -> List[KeywordData]:
        """Volume, difficulty, CPC and competition for each keyword."""
        body = await self._request("POST", "/research/keywords", json_data={"keywords": keywords})
        return [_map_keyword(row) for row in _rows(body)]

    async def get_competitor_keywords(self, domain: str) -> List[KeywordData]:
        """Organic keywords a competitor domain ranks for."""
        body = await self._request("GET", f"/research/competitors?domain={quote(domain, safe='')}")
        return [_map_keyword(row) for row in _rows(body)]

    async def bulk_keyword_research(self, seeds: List[str]) -> List[KeywordData]:
        """Research up to 100 seeds in batches of 10, deduplicated by keyword.

        Batches run sequentially with a 500 ms pause between consecutive
        batches. The first occurrence of a keyword wins.
        """
        if len(seeds) > MAX_BULK_SEEDS:
            logger.warning(
                "Keyword research limited to %d of %d seeds; %d dropped",
                MAX_BULK_SEEDS, len(seeds), len(seeds) - MAX_BULK_SEEDS,
            )
            seeds = seeds[:MAX_BULK_SEEDS]
        results: List[KeywordData] = []
        for start in range(0, len(seeds), KEYWORD_BATCH_SIZE):
            batch = seeds[start:start + KEYWORD_BATCH_SIZE]
            results.extend(await self.keyword_research(batch))
            if start + KEYWORD_BATCH_SIZE < len(seeds):
                await self._sleep(BATCH_DELAY)

        deduped: Dict[str, KeywordData] = {}
        for item in results:
            if item.keyword not in deduped:
                deduped[item.keyword] = item
        return list(deduped.values())

    # -- Rank tracking ------------------------------------------------------

    async def create_project(self, name: str, domain: str) -> str:
        body = await self._request("POST", "/projects", json_data={"name": name, "domain": domain})
        project_id = str(body.get("id", "")) if isinstance(body, dict) else ""
        logger.info("Created SE Ranking project %s for %s", project_id, domain)
        return project_id

    async def add_keywords_to_project(self, project_id: str, keywords: List[str]) -> int:
        """Submit keywords for tracking in batches of 50. Returns the count sent."""
        path = f"/projects/{quote(str(project_id), safe='')}/keywords"
        for start in range(0, len(keywords), PROJECT_KEYWORD_BATCH_SIZE):
            batch = keywords[start:start + PROJECT_KEYWORD_BATCH_SIZE]
            await self._request("POST", path, json_data={"keywords": batch})
            if start + PROJECT_KEYWORD_BATCH_SIZE < len(keywords):
                await self._sleep(BATCH_DELAY)
        return len(keywords)

    async def get_positions(self, project_id: str) -> List[PositionData]:
        body = await self._request("GET", f"/projects/{quote(str(project_id), safe='')}/positions")
        return [_map_position(row) for row in _rows(body)]
