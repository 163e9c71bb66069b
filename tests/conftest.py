"""
Shared fixtures for the Practice Autopilot test suite.

Provides a temp datastore, a sample account, fake collaborators and an
``AgentContext`` wired with them so that all tests run WITHOUT any
external services.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from autopilot.compliance import ComplianceEngine
from autopilot.config import Settings
from autopilot.context import AgentContext
from autopilot.datastore import Datastore
from autopilot.effects import EffectRunner
from autopilot.models import Account


# ---------------------------------------------------------------------------
# Store / settings fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    return Settings(
        anthropic_api_key="test-anthropic-key",
        se_ranking_api_key="test-se-key",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_uri="https://app.test/oauth/callback",
        encryption_key="test-encryption-secret",
        data_dir=tmp_path,
        cron_secret="test-cron-secret",
        agent_key="test-agent-key",
    )


@pytest.fixture
def datastore(tmp_path):
    return Datastore(tmp_path)


@pytest.fixture
def account_data():
    return {
        "id": "acct-1",
        "name": "Bright Smiles Dental",
        "domain": "brightsmiles.test",
        "vertical": "dental",
        "practice_profile": {
            "name": "Bright Smiles Dental",
            "city": "Austin",
            "services": ["dental implants", "invisalign"],
            "doctors": ["Dr. Rivera"],
        },
        "competitors": [{"name": "Rival Dental", "domain": "rival.test"}],
        "cms_credentials": {
            "site_url": "https://brightsmiles.test",
            "username": "editor",
            "application_password": "abcd efgh ijkl",
        },
    }


@pytest.fixture
def account(datastore, account_data):
    return datastore.save_account(Account.from_dict(account_data))


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_completion():
    """Completion service double: set complete / complete_json return values per test."""
    completion = MagicMock()
    completion.content_model = "content-model"
    completion.review_model = "review-model"
    completion.complete = AsyncMock(return_value="[]")
    completion.complete_json = AsyncMock(return_value={})
    return completion


@pytest.fixture
def fake_tokens():
    tokens = AsyncMock()
    tokens.refresh_if_needed = AsyncMock(return_value=MagicMock(access_token="access-1"))
    tokens.force_refresh = AsyncMock(return_value=MagicMock(access_token="access-2"))
    return tokens


@pytest.fixture
def search_console_client():
    client = AsyncMock()
    client.get_top_queries = AsyncMock(return_value=[])
    return client


@pytest.fixture
def keyword_client():
    client = AsyncMock()
    client.bulk_keyword_research = AsyncMock(return_value=[])
    client.get_competitor_keywords = AsyncMock(return_value=[])
    return client


@pytest.fixture
def gbp_client():
    return AsyncMock()


@pytest.fixture
def publisher():
    wp = AsyncMock()
    wp.publish_post = AsyncMock(
        return_value={"id": 321, "link": "https://brightsmiles.test/implants", "status": "publish"}
    )
    wp.unpublish_post = AsyncMock(return_value=None)
    return wp


@pytest.fixture
def ctx(
    settings,
    datastore,
    fake_completion,
    fake_tokens,
    search_console_client,
    keyword_client,
    gbp_client,
    publisher,
):
    """AgentContext with a real datastore, rules-only compliance and mocked clients."""
    return AgentContext(
        settings=settings,
        datastore=datastore,
        completion=fake_completion,
        compliance=ComplianceEngine(None),
        tokens=fake_tokens,
        effects=EffectRunner(datastore, notifier=MagicMock()),
        keyword_research=lambda: keyword_client,
        search_console=lambda account_id: search_console_client,
        business_profile=lambda account_id: gbp_client,
        publisher=lambda acct: publisher,
    )


# ---------------------------------------------------------------------------
# HTTP mock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_aiohttp_response():
    """Create a mock aiohttp response factory."""

    def _make(status=200, json_data=None, text="", headers=None):
        resp = AsyncMock()
        resp.status = status
        resp.json = AsyncMock(return_value=json_data if json_data is not None else {})
        resp.text = AsyncMock(return_value=text)
        resp.headers = headers or {"Content-Type": "application/json"}
        resp.__aenter__ = AsyncMock(return_value=resp)
        resp.__aexit__ = AsyncMock(return_value=False)
        return resp

    return _make


@pytest.fixture
def make_mock_session():
    """Mock aiohttp session whose .request() yields the given responses in order.

    The clients use ``async with session.request(method, url, **kwargs) as resp``
    so ``session.request`` returns async context managers wrapping each response.
    """

    def _make(*responses):
        contexts = []
        for response in responses:
            ctx = AsyncMock()
            ctx.__aenter__ = AsyncMock(return_value=response)
            ctx.__aexit__ = AsyncMock(return_value=False)
            contexts.append(ctx)
        session = AsyncMock()
        session.request = MagicMock(side_effect=contexts)
        session.get = MagicMock(side_effect=list(contexts))
        session.close = AsyncMock()
        session.closed = False
        return session

    return _make
