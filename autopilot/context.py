"""
Explicit dependency container passed into every pipeline call.

``build_context`` constructs the long-lived collaborators once at process
start. Clients that are scoped to an account (Search Console, GBP,
WordPress) are produced by factories so each run gets its own session.
Tests build an ``AgentContext`` directly with fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from autopilot.compliance import ComplianceEngine
from autopilot.config import Settings, load_settings
from autopilot.datastore import Datastore
from autopilot.effects import EffectRunner
from autopilot.encryption import TokenCipher
from autopilot.gbp_client import GBPClient
from autopilot.google_tokens import GoogleTokenManager
from autopilot.llm import CompletionService
from autopilot.models import Account
from autopilot.se_ranking import SERankingClient
from autopilot.search_console import SearchConsoleClient
from autopilot.wordpress_client import WordPressClient


@dataclass
class AgentContext:
    settings: Settings
    datastore: Datastore
    completion: CompletionService
    compliance: ComplianceEngine
    tokens: Any  # GoogleTokenManager or a fake with refresh_if_needed/force_refresh
    effects: EffectRunner
    keyword_research: Callable[[], Any]
    search_console: Callable[[str], Any]
    business_profile: Callable[[str], Any]
    publisher: Callable[[Account], Any]


def _wordpress_for(account: Account) -> WordPressClient:
    creds = account.cms_credentials
    return WordPressClient(
        account.site_url,
        creds.get("username", ""),
        creds.get("application_password", ""),
    )


def build_context(settings: Optional[Settings] = None) -> AgentContext:
    """Wire real clients from *settings* (defaults to the environment)."""
    settings = settings or load_settings()
    datastore = Datastore(settings.data_dir)
    completion = CompletionService(
        api_key=settings.anthropic_api_key,
        content_model=settings.model_content,
        review_model=settings.model_review,
    )
    tokens = GoogleTokenManager(
        datastore,
        TokenCipher(settings.encryption_key),
        settings.google_client_id,
        settings.google_client_secret,
        settings.google_redirect_uri,
    )

    def keyword_research() -> SERankingClient:
        return SERankingClient(
            settings.se_ranking_api_key,
            max_rate_limit_retries=settings.max_rate_limit_retries,
        )

    return AgentContext(
        settings=settings,
        datastore=datastore,
        completion=completion,
        compliance=ComplianceEngine(completion),
        tokens=tokens,
        effects=EffectRunner(datastore),
        keyword_research=keyword_research,
        search_console=lambda account_id: SearchConsoleClient(account_id, tokens),
        business_profile=lambda account_id: GBPClient(account_id, tokens, completion),
        publisher=_wordpress_for,
    )
