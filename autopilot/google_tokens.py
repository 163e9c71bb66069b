"""
Google OAuth token lifecycle for connected accounts.

Tokens are stored Fernet-encrypted on the account record. The manager
hands out access tokens, refreshing them when they expire within five
minutes. A failed refresh flips the account to ``disconnected`` and raises
``TokenRefreshError``; callers treat that as fatal for the current
operation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import aiohttp

from autopilot.datastore import Datastore
from autopilot.encryption import TokenCipher
from autopilot.errors import TokenRefreshError
from autopilot.http_client import DEFAULT_TIMEOUT, HTTPClient, read_body
from autopilot.models import AccountHealth, TokenSet

logger = logging.getLogger("autopilot.google_tokens")

TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
EXPIRY_BUFFER_MS = 5 * 60 * 1000

SCOPES = (
    "https://www.googleapis.com/auth/webmasters.readonly",
    "https://www.googleapis.com/auth/business.manage",
)


class GoogleTokenManager(HTTPClient):
    """Refresh, exchange and revoke Google OAuth tokens for accounts."""

    def __init__(
        self,
        datastore: Datastore,
        cipher: TokenCipher,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "",
        *,
        timeout: int = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(timeout=timeout)
        self.datastore = datastore
        self.cipher = cipher
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load_tokens(self, account_id: str) -> TokenSet:
        account = self.datastore.get_account(account_id)
        tokens = self.cipher.decrypt_tokens(account.google_tokens)
        if tokens is None:
            raise TokenRefreshError(f"No Google tokens stored for account {account_id}")
        return tokens

    def _store_tokens(self, account_id: str, tokens: TokenSet, **changes: Any) -> None:
        self.datastore.update_account(
            account_id, google_tokens=self.cipher.encrypt_tokens(tokens), **changes
        )

    async def _post_form(self, url: str, form: Dict[str, str]) -> Dict[str, Any]:
        session = await self._get_session()
        async with session.request("POST", url, data=form) as resp:
            status = resp.status
            body = await read_body(resp)
        if status >= 400 or not isinstance(body, dict):
            raise TokenRefreshError(
                f"Token endpoint returned {status}",
                status_code=status,
                response_body=str(body),
            )
        return body

    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        """Consent screen URL requesting offline access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, account_id: str, code: str) -> TokenSet:
        """Trade an authorization code for tokens and store them on the account."""
        body = await self._post_form(
            TOKEN_URL,
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        tokens = TokenSet(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token", ""),
            expiry=self._now_ms() + int(body.get("expires_in", 3600)) * 1000,
            scope=body.get("scope", ""),
        )
        self._store_tokens(account_id, tokens, account_health=AccountHealth.ACTIVE.value)
        logger.info("Connected Google account for %s", account_id)
        return tokens

    async def refresh_if_needed(self, account_id: str) -> TokenSet:
        """Stored tokens if they are valid for 5+ more minutes, else refreshed ones."""
        tokens = self._load_tokens(account_id)
        if tokens.expiry > self._now_ms() + EXPIRY_BUFFER_MS:
            return tokens
        return await self._refresh(account_id, tokens)

    async def force_refresh(self, account_id: str) -> TokenSet:
        return await self._refresh(account_id, self._load_tokens(account_id))

    async def _refresh(self, account_id: str, tokens: TokenSet) -> TokenSet:
        try:
            body = await self._post_form(
                TOKEN_URL,
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": tokens.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            refreshed = TokenSet(
                access_token=body["access_token"],
                refresh_token=tokens.refresh_token,
                expiry=self._now_ms() + int(body.get("expires_in", 3600)) * 1000,
                scope=body.get("scope") or tokens.scope,
            )
        except (TokenRefreshError, KeyError, ValueError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.datastore.update_account(
                account_id, account_health=AccountHealth.DISCONNECTED.value
            )
            logger.error("Token refresh failed for %s: %s", account_id, exc)
            raise TokenRefreshError(
                f"Failed to refresh Google tokens for account {account_id}. "
                "Account marked as disconnected."
            ) from exc

        self._store_tokens(account_id, refreshed)
        logger.info("Refreshed Google tokens for %s", account_id)
        return refreshed

    async def revoke(self, account_id: str) -> None:
        """Best-effort revoke at Google; always clears local tokens."""
        account = self.datastore.get_account(account_id)
        tokens: Optional[TokenSet] = self.cipher.decrypt_tokens(account.google_tokens)
        if tokens is not None:
            session = await self._get_session()
            try:
                async with session.request(
                    "POST", REVOKE_URL, params={"token": tokens.access_token}
                ) as resp:
                    if resp.status >= 400:
                        logger.warning("Revoke returned %s for %s", resp.status, account_id)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning("Revoke request failed for %s: %s", account_id, exc)

        self.datastore.update_account(
            account_id,
            google_tokens=None,
            account_health=AccountHealth.DISCONNECTED.value,
        )
        logger.info("Cleared Google tokens for %s", account_id)
