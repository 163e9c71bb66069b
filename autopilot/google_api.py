"""
Bearer-authenticated requests against Google APIs for one account.

Access tokens come from ``GoogleTokenManager``. A 401 triggers exactly one
retry with a force-refreshed token; a second 401 is fatal. 403 is fatal
with a service-specific "access denied" message.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Type

import aiohttp

from autopilot.errors import ExternalServiceError
from autopilot.google_tokens import GoogleTokenManager
from autopilot.http_client import DEFAULT_TIMEOUT, HTTPClient, read_body

logger = logging.getLogger("autopilot.google_api")


class GoogleAPIClient(HTTPClient):
    """Base for account-scoped Google API clients."""

    service_name = "Google API"
    error_class: Type[ExternalServiceError] = ExternalServiceError
    access_denied_message = "Access denied. Verify permissions are granted."

    def __init__(
        self,
        account_id: str,
        tokens: GoogleTokenManager,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self.account_id = account_id
        self.tokens = tokens

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        session = await self._get_session()
        token_set = await self.tokens.refresh_if_needed(self.account_id)
        retried = False

        while True:
            kwargs: Dict[str, Any] = {
                "headers": {"Authorization": f"Bearer {token_set.access_token}"},
            }
            if json_data is not None:
                kwargs["json"] = json_data
            if params is not None:
                kwargs["params"] = {k: v for k, v in params.items() if v is not None}
            try:
                async with session.request(method, url, **kwargs) as resp:
                    status = resp.status
                    body = await read_body(resp)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise self.error_class(f"Cannot reach {self.service_name}: {exc}") from exc

            if status == 401 and not retried:
                retried = True
                logger.info("%s returned 401 for %s, forcing token refresh", self.service_name, self.account_id)
                token_set = await self.tokens.force_refresh(self.account_id)
                continue
            if status == 401:
                raise self.error_class(
                    f"{self.service_name} rejected refreshed credentials",
                    status_code=401,
                    response_body=str(body),
                )
            if status == 403:
                raise self.error_class(
                    self.access_denied_message,
                    status_code=403,
                    response_body=str(body),
                )
            if status >= 400:
                raise self.error_class(
                    f"{self.service_name} error: {status}",
                    status_code=status,
                    response_body=str(body),
                )
            return body
