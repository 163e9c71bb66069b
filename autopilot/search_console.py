"""
Google Search Console client (search analytics for an account's site).
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from autopilot.errors import ExternalServiceError
from autopilot.google_api import GoogleAPIClient
from autopilot.models import SearchQuery

GSC_API_BASE = "https://www.googleapis.com/webmasters/v3/sites"


class SearchConsoleError(ExternalServiceError):
    """Search Console API failure."""


def site_property(domain: str) -> str:
    """Domain property identifier for *domain*."""
    return f"sc-domain:{domain}"


def trailing_window(days: int, today: Optional[date] = None) -> Tuple[str, str]:
    end = today or date.today()
    start = end - timedelta(days=days)
    return start.isoformat(), end.isoformat()


class SearchConsoleClient(GoogleAPIClient):
    service_name = "Google Search Console"
    error_class = SearchConsoleError
    access_denied_message = (
        "Access denied to Google Search Console. "
        "Verify the site is added and permissions are granted."
    )

    async def _search_analytics(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        dimension: str,
        row_limit: int,
    ) -> List[Dict[str, Any]]:
        url = f"{GSC_API_BASE}/{quote(site_url, safe='')}/searchAnalytics/query"
        body = await self._request(
            "POST",
            url,
            json_data={
                "startDate": start_date,
                "endDate": end_date,
                "dimensions": [dimension],
                "rowLimit": row_limit,
            },
        )
        return (body or {}).get("rows", []) if isinstance(body, dict) else []

    async def get_top_queries(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        row_limit: int = 100,
    ) -> List[SearchQuery]:
        rows = await self._search_analytics(site_url, start_date, end_date, "query", row_limit)
        return [
            SearchQuery(
                query=(row.get("keys") or [""])[0],
                clicks=row.get("clicks", 0),
                impressions=row.get("impressions", 0),
                ctr=row.get("ctr", 0.0),
                position=row.get("position", 0.0),
            )
            for row in rows
        ]

    async def get_top_pages(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        row_limit: int = 100,
    ) -> List[Dict[str, Any]]:
        rows = await self._search_analytics(site_url, start_date, end_date, "page", row_limit)
        return [
            {
                "page": (row.get("keys") or [""])[0],
                "clicks": row.get("clicks", 0),
                "impressions": row.get("impressions", 0),
                "ctr": row.get("ctr", 0.0),
                "position": row.get("position", 0.0),
            }
            for row in rows
        ]

    async def get_site_list(self) -> List[str]:
        body = await self._request("GET", GSC_API_BASE)
        entries = body.get("siteEntry", []) if isinstance(body, dict) else []
        return [e["siteUrl"] for e in entries if e.get("siteUrl")]
