"""Tests for Google OAuth token lifecycle management."""

from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest

from autopilot.encryption import TokenCipher
from autopilot.errors import TokenRefreshError
from autopilot.google_tokens import REVOKE_URL, TOKEN_URL, GoogleTokenManager
from autopilot.models import TokenSet

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)
MINUTE_MS = 60 * 1000


@pytest.fixture
def cipher():
    return TokenCipher("test-encryption-secret")


@pytest.fixture
def manager(datastore, cipher, account):
    return GoogleTokenManager(
        datastore,
        cipher,
        "client-id",
        "client-secret",
        "https://app.test/oauth/callback",
        clock=lambda: NOW,
    )


def _store(datastore, cipher, expiry):
    tokens = TokenSet(
        access_token="old-access",
        refresh_token="refresh-1",
        expiry=expiry,
        scope="webmasters.readonly",
    )
    datastore.update_account("acct-1", google_tokens=cipher.encrypt_tokens(tokens))
    return tokens


class TestRefreshIfNeeded:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid_token_returned_without_request(self, manager, datastore, cipher, make_mock_session):
        stored = _store(datastore, cipher, NOW_MS + 10 * MINUTE_MS)
        session = make_mock_session()
        with patch.object(manager, "_get_session", return_value=session):
            tokens = await manager.refresh_if_needed("acct-1")
        assert tokens == stored
        session.request.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_inside_buffer_is_refreshed(
        self, manager, datastore, cipher, mock_aiohttp_response, make_mock_session
    ):
        _store(datastore, cipher, NOW_MS + 2 * MINUTE_MS)
        session = make_mock_session(
            mock_aiohttp_response(200, {"access_token": "new-access", "expires_in": 3599})
        )
        with patch.object(manager, "_get_session", return_value=session):
            tokens = await manager.refresh_if_needed("acct-1")

        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "refresh-1"
        assert tokens.expiry == NOW_MS + 3599 * 1000
        assert tokens.scope == "webmasters.readonly"

        method, url = session.request.call_args.args
        form = session.request.call_args.kwargs["data"]
        assert (method, url) == ("POST", TOKEN_URL)
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"

        persisted = cipher.decrypt_tokens(datastore.get_account("acct-1").google_tokens)
        assert persisted.access_token == "new-access"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_refresh_disconnects_account(
        self, manager, datastore, cipher, mock_aiohttp_response, make_mock_session
    ):
        _store(datastore, cipher, NOW_MS - MINUTE_MS)
        session = make_mock_session(mock_aiohttp_response(400, {"error": "invalid_grant"}))
        with patch.object(manager, "_get_session", return_value=session):
            with pytest.raises(TokenRefreshError) as exc_info:
                await manager.refresh_if_needed("acct-1")
        assert "disconnected" in str(exc_info.value)
        assert datastore.get_account("acct-1").account_health == "disconnected"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_tokens(self, manager, datastore):
        with pytest.raises(TokenRefreshError):
            await manager.refresh_if_needed("acct-1")
        assert datastore.get_account("acct-1").account_health == "active"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_force_refresh_ignores_expiry(
        self, manager, datastore, cipher, mock_aiohttp_response, make_mock_session
    ):
        _store(datastore, cipher, NOW_MS + 60 * MINUTE_MS)
        session = make_mock_session(mock_aiohttp_response(200, {"access_token": "forced"}))
        with patch.object(manager, "_get_session", return_value=session):
            tokens = await manager.force_refresh("acct-1")
        assert tokens.access_token == "forced"


class TestConnectAndRevoke:

    @pytest.mark.unit
    def test_authorization_url(self, manager):
        url = manager.authorization_url("state-123")
        query = parse_qs(urlparse(url).query)
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["state"] == ["state-123"]
        assert "business.manage" in query["scope"][0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exchange_code(self, manager, datastore, cipher, mock_aiohttp_response, make_mock_session):
        datastore.update_account("acct-1", account_health="disconnected")
        session = make_mock_session(
            mock_aiohttp_response(
                200, {"access_token": "a1", "refresh_token": "r1", "expires_in": 3600, "scope": "s"}
            )
        )
        with patch.object(manager, "_get_session", return_value=session):
            tokens = await manager.exchange_code("acct-1", "auth-code")

        assert session.request.call_args.kwargs["data"]["grant_type"] == "authorization_code"
        account = datastore.get_account("acct-1")
        assert account.account_health == "active"
        assert cipher.decrypt_tokens(account.google_tokens) == tokens

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_revoke_clears_tokens(self, manager, datastore, cipher, mock_aiohttp_response, make_mock_session):
        _store(datastore, cipher, NOW_MS + 10 * MINUTE_MS)
        session = make_mock_session(mock_aiohttp_response(500, {}))
        with patch.object(manager, "_get_session", return_value=session):
            await manager.revoke("acct-1")

        method, url = session.request.call_args.args
        assert (method, url) == ("POST", REVOKE_URL)
        assert session.request.call_args.kwargs["params"] == {"token": "old-access"}
        account = datastore.get_account("acct-1")
        assert account.google_tokens is None
        assert account.account_health == "disconnected"
