"""
Scholar: keyword research pipeline.

Stages (fail-fast; any stage error ends the run as failed):

    fetch_search_performance -> research_keywords -> analyze_competitors
        -> gap_analysis -> prioritize -> save_results -> end

Usage:
    result = await run_scholar(ctx, "acct-123")
    result.content_topics   # List[Topic] handed to Ghostwriter
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from autopilot.context import AgentContext
from autopilot.effects import finalize_effects
from autopilot.errors import ValidationError
from autopilot.models import (
    Account,
    ActionType,
    AgentName,
    Keyword,
    KeywordData,
    KeywordType,
    PipelineName,
    PrioritizedKeyword,
    ReviewQueueItem,
    Run,
    RunStatus,
    RunTrigger,
    SearchQuery,
    Severity,
    Topic,
)
from autopilot.search_console import site_property, trailing_window
from autopilot.state_machine import run_state_machine

logger = logging.getLogger("autopilot.scholar")

LOOKBACK_DAYS = 90
SEARCH_ROW_LIMIT = 500
GAP_MIN_VOLUME = 50
GAP_MAX_DIFFICULTY = 60
GAP_LIMIT = 50
PROMPT_POOL_LIMIT = 100
PROMPT_QUERY_LIMIT = 20
MAX_PRIORITIZED = 30
MAX_TOPICS = 5

DEFAULT_DENTAL_TERMS = ["dentist", "dental implants", "teeth whitening", "emergency dentist"]


class ScholarStage(str, Enum):
    FETCH_SEARCH_PERFORMANCE = "fetch_search_performance"
    RESEARCH_KEYWORDS = "research_keywords"
    ANALYZE_COMPETITORS = "analyze_competitors"
    GAP_ANALYSIS = "gap_analysis"
    PRIORITIZE = "prioritize"
    SAVE_RESULTS = "save_results"
    END = "end"


STAGE_ORDER = list(ScholarStage)


@dataclass
class ScholarState:
    account: Account
    run_id: str
    site_url: str
    stage: Optional[ScholarStage] = None
    error: Optional[str] = None
    history: List[str] = field(default_factory=list)
    search_queries: List[SearchQuery] = field(default_factory=list)
    researched: List[KeywordData] = field(default_factory=list)
    competitor_keywords: List[Dict[str, Any]] = field(default_factory=list)
    gaps: List[KeywordData] = field(default_factory=list)
    prioritized: List[PrioritizedKeyword] = field(default_factory=list)
    topics: List[Topic] = field(default_factory=list)
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScholarResult:
    run_id: str
    status: str
    keywords_found: int = 0
    content_topics: List[Topic] = field(default_factory=list)
    gap_keywords: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "keywords_found": self.keywords_found,
            "content_topics": [t.to_dict() for t in self.content_topics],
            "gap_keywords": self.gap_keywords,
            "error": self.error,
        }


def route(state: ScholarState) -> ScholarStage:
    """Next stage: linear order, straight to END on error."""
    if state.error or state.stage is None:
        return ScholarStage.END
    return STAGE_ORDER[STAGE_ORDER.index(state.stage) + 1]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def generate_seed_keywords(profile: Dict[str, Any]) -> List[str]:
    """Seed phrases from declared services and city; dental defaults otherwise."""
    services = profile.get("services") or []
    city = (profile.get("city") or "").strip()
    seeds: List[str] = []
    for service in services:
        seeds.append(f"{service} near me")
        if city:
            seeds.append(f"{service} {city}")
            seeds.append(f"best {service} {city}")
            seeds.append(f"{service} cost {city}")
    if not seeds:
        for term in DEFAULT_DENTAL_TERMS:
            if city:
                seeds.append(f"{term} {city}")
            seeds.append(f"{term} near me")
    return seeds


def find_keyword_gaps(
    search_queries: List[SearchQuery],
    researched: List[KeywordData],
    competitor_keywords: List[Dict[str, Any]],
) -> List[KeywordData]:
    """Competitor keywords the account does not cover, by volume, capped at 50."""
    own = {q.query.lower() for q in search_queries}
    own.update(k.keyword.lower() for k in researched)

    gaps: List[KeywordData] = []
    seen = set()
    for entry in competitor_keywords:
        for kw in entry["keywords"]:
            text = kw.keyword.lower()
            if text in own or text in seen:
                continue
            if kw.search_volume > GAP_MIN_VOLUME and kw.difficulty < GAP_MAX_DIFFICULTY:
                seen.add(text)
                gaps.append(kw)
    gaps.sort(key=lambda k: k.search_volume, reverse=True)
    return gaps[:GAP_LIMIT]


def _keyword_pool(state: ScholarState) -> List[Dict[str, Any]]:
    pool = [dict(k.to_dict(), source="research") for k in state.researched]
    pool.extend(dict(k.to_dict(), source="gap") for k in state.gaps)
    return pool


def _as_int(value: Any) -> int:
    """Model-supplied counts: "1,200" -> 1200, "~500" -> 500, "high" -> 0."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    match = re.search(r"\d+", str(value or "").replace(",", ""))
    return int(match.group()) if match else 0


def _parse_prioritized(raw: Dict[str, Any]) -> PrioritizedKeyword:
    keyword_type = raw.get("keywordType") or KeywordType.TARGET.value
    if keyword_type not in {t.value for t in KeywordType}:
        keyword_type = KeywordType.TARGET.value
    return PrioritizedKeyword(
        keyword=str(raw.get("keyword", "")),
        search_volume=_as_int(raw.get("searchVolume")),
        difficulty=_as_int(raw.get("difficulty")),
        priority=_as_int(raw.get("priority")),
        reasoning=str(raw.get("reasoning", "")),
        keyword_type=keyword_type,
        source=str(raw.get("source") or "scholar"),
    )


def _parse_topic(raw: Dict[str, Any]) -> Topic:
    return Topic(
        keyword=str(raw.get("keyword", "")),
        suggested_title=str(raw.get("suggestedTitle", "")),
        angle=str(raw.get("angle", "")),
        estimated_volume=_as_int(raw.get("estimatedVolume")),
    )


PRIORITIZE_SYSTEM = (
    "You are an expert {vertical} SEO strategist. Analyze keyword data and prioritize "
    "opportunities for a {vertical} practice. Always respond with valid JSON."
)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ScholarPipeline:
    """Stage handlers bound to one context."""

    def __init__(self, ctx: AgentContext) -> None:
        self.ctx = ctx
        self._keyword_client: Any = None
        self._stage_map = {
            ScholarStage.FETCH_SEARCH_PERFORMANCE: self._stage_fetch_search_performance,
            ScholarStage.RESEARCH_KEYWORDS: self._stage_research_keywords,
            ScholarStage.ANALYZE_COMPETITORS: self._stage_analyze_competitors,
            ScholarStage.GAP_ANALYSIS: self._stage_gap_analysis,
            ScholarStage.PRIORITIZE: self._stage_prioritize,
            ScholarStage.SAVE_RESULTS: self._stage_save_results,
        }

    def _keywords(self) -> Any:
        if self._keyword_client is None:
            self._keyword_client = self.ctx.keyword_research()
        return self._keyword_client

    async def close(self) -> None:
        if self._keyword_client is not None:
            await self._keyword_client.close()
            self._keyword_client = None

    async def run(self, state: ScholarState) -> ScholarState:
        try:
            return await run_state_machine(
                state,
                ScholarStage.FETCH_SEARCH_PERFORMANCE,
                ScholarStage.END,
                self._stage_map,
                route,
                name=f"scholar[{state.run_id[:8]}]",
            )
        finally:
            await self.close()

    async def _stage_fetch_search_performance(self, state: ScholarState) -> None:
        start, end = trailing_window(LOOKBACK_DAYS)
        client = self.ctx.search_console(state.account.id)
        try:
            state.search_queries = await client.get_top_queries(
                state.site_url, start, end, row_limit=SEARCH_ROW_LIMIT
            )
        finally:
            await client.close()
        logger.info("Fetched %d search queries for %s", len(state.search_queries), state.account.id)

    async def _stage_research_keywords(self, state: ScholarState) -> None:
        seeds = generate_seed_keywords(state.account.practice_profile)
        state.researched = await self._keywords().bulk_keyword_research(seeds)
        logger.info("Researched %d keywords from %d seeds", len(state.researched), len(seeds))

    async def _stage_analyze_competitors(self, state: ScholarState) -> None:
        for comp in state.account.competitors:
            domain = comp.get("domain")
            if not domain:
                continue
            keywords = await self._keywords().get_competitor_keywords(domain)
            state.competitor_keywords.append(
                {"competitor": comp.get("name") or domain, "keywords": keywords}
            )

    async def _stage_gap_analysis(self, state: ScholarState) -> None:
        state.gaps = find_keyword_gaps(
            state.search_queries, state.researched, state.competitor_keywords
        )
        logger.info("Found %d gap keywords", len(state.gaps))

    async def _stage_prioritize(self, state: ScholarState) -> None:
        pool = _keyword_pool(state)
        prompt = (
            f"Practice profile:\n{json.dumps(state.account.practice_profile, indent=2)}\n\n"
            "Current search performance (top queries):\n"
            f"{json.dumps([q.to_dict() for q in state.search_queries[:PROMPT_QUERY_LIMIT]], indent=2)}\n\n"
            f"Keyword opportunities ({len(pool)} total):\n"
            f"{json.dumps(pool[:PROMPT_POOL_LIMIT], indent=2)}\n\n"
            "Tasks:\n"
            f"1. Rank the top {MAX_PRIORITIZED} keywords by priority. Consider: search volume, "
            "difficulty (prefer <40), relevance to this practice's services, and local intent.\n"
            f"2. For the top {MAX_TOPICS} keywords, suggest a content topic (blog post title + brief angle).\n"
            "3. Return JSON with this exact structure:\n"
            '{"prioritizedKeywords": [{"keyword": "...", "searchVolume": 0, "difficulty": 0, '
            '"priority": 1, "reasoning": "...", "keywordType": "target|gap|branded", '
            '"source": "research|gap"}], '
            '"contentTopics": [{"keyword": "...", "suggestedTitle": "...", "angle": "...", '
            '"estimatedVolume": 0}]}'
        )
        parsed = await self.ctx.completion.complete_json(
            prompt,
            system=PRIORITIZE_SYSTEM.format(vertical=state.account.vertical),
            max_tokens=4096,
        )
        if not isinstance(parsed, dict):
            raise ValueError("Prioritization response was not a JSON object")
        state.prioritized = [
            _parse_prioritized(k)
            for k in (parsed.get("prioritizedKeywords") or [])[:MAX_PRIORITIZED]
            if isinstance(k, dict) and k.get("keyword")
        ]
        state.topics = [
            _parse_topic(t)
            for t in (parsed.get("contentTopics") or [])[:MAX_TOPICS]
            if isinstance(t, dict) and t.get("keyword")
        ]

    async def _stage_save_results(self, state: ScholarState) -> None:
        store = self.ctx.datastore
        account_id = state.account.id
        with store.transaction():
            for pk in state.prioritized:
                store.upsert_keyword(
                    Keyword(
                        account_id=account_id,
                        keyword=pk.keyword,
                        search_volume=pk.search_volume,
                        difficulty=pk.difficulty,
                        keyword_type=pk.keyword_type,
                        source=pk.source,
                    )
                )
            for topic in state.topics:
                store.save_queue_item(
                    ReviewQueueItem(
                        account_id=account_id,
                        agent=AgentName.SCHOLAR.value,
                        action_type=ActionType.CONTENT_RECOMMENDATION.value,
                        description=f"Content topic: {topic.suggested_title} ({topic.angle})",
                        proposed_data=topic.to_dict(),
                        severity=Severity.INFO.value,
                        autonomy_tier=1,
                    )
                )
        state.result = {
            "keywords_tracked": len(state.prioritized),
            "content_topics": len(state.topics),
            "gap_keywords": len(state.gaps),
        }


async def run_scholar(
    ctx: AgentContext,
    account_id: str,
    trigger: str = RunTrigger.MANUAL.value,
) -> ScholarResult:
    """Run the keyword pipeline for one account and finalize its run record."""
    if not account_id:
        raise ValidationError("account_id is required")
    account = ctx.datastore.get_account(account_id)

    run = ctx.datastore.create_run(
        Run(account_id=account_id, pipeline=PipelineName.SCHOLAR.value, trigger=trigger)
    )
    logger.info("Scholar run %s started for %s", run.id[:8], account_id)
    state = ScholarState(account=account, run_id=run.id, site_url=site_property(account.domain))
    await ScholarPipeline(ctx).run(state)

    ctx.effects.execute(
        finalize_effects(run.id, account_id, PipelineName.SCHOLAR.value, state.result, state.error)
    )
    status = RunStatus.FAILED.value if state.error else RunStatus.COMPLETED.value
    logger.info("Scholar run %s %s", run.id[:8], status)
    return ScholarResult(
        run_id=run.id,
        status=status,
        keywords_found=len(state.prioritized),
        content_topics=list(state.topics),
        gap_keywords=len(state.gaps),
        error=state.error,
    )
