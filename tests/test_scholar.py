"""
Tests for the Scholar keyword research pipeline.

Search Console, SE Ranking and the completion service are mocked via the
shared ``ctx`` fixture; the datastore is real.
"""

from unittest.mock import AsyncMock

import pytest

from autopilot.errors import CompletionError, NotFoundError, ValidationError
from autopilot.models import Account, KeywordData, SearchQuery, Topic
from autopilot.scholar import (
    GAP_LIMIT,
    ScholarStage,
    ScholarState,
    find_keyword_gaps,
    generate_seed_keywords,
    route,
    run_scholar,
)

PRIORITIZED_REPLY = {
    "prioritizedKeywords": [
        {"keyword": "emergency dentist austin", "searchVolume": 400, "difficulty": 20,
         "priority": 1, "reasoning": "Urgent local intent", "keywordType": "gap", "source": "gap"},
        {"keyword": "dental implants austin", "searchVolume": 300, "difficulty": 30,
         "priority": 2, "reasoning": "Core service", "keywordType": "target", "source": "research"},
        {"searchVolume": 10},
    ],
    "contentTopics": [
        {"keyword": "emergency dentist austin", "suggestedTitle": "What To Do In A Dental Emergency",
         "angle": "Same-day care", "estimatedVolume": 400},
    ],
}


# ===================================================================
# Pure helpers
# ===================================================================

class TestSeedKeywords:

    @pytest.mark.unit
    def test_services_and_city(self):
        seeds = generate_seed_keywords({"services": ["implants"], "city": "Austin"})
        assert seeds == [
            "implants near me",
            "implants Austin",
            "best implants Austin",
            "implants cost Austin",
        ]

    @pytest.mark.unit
    def test_services_without_city(self):
        assert generate_seed_keywords({"services": ["veneers", "invisalign"]}) == [
            "veneers near me",
            "invisalign near me",
        ]

    @pytest.mark.unit
    def test_dental_defaults(self):
        with_city = generate_seed_keywords({"city": "Austin"})
        assert "dentist Austin" in with_city
        assert "emergency dentist near me" in with_city
        assert len(with_city) == 8
        assert generate_seed_keywords({}) == [
            "dentist near me",
            "dental implants near me",
            "teeth whitening near me",
            "emergency dentist near me",
        ]


class TestKeywordGaps:

    @pytest.mark.unit
    def test_filters_owned_small_and_hard_keywords(self):
        competitor = {
            "competitor": "Rival",
            "keywords": [
                KeywordData("Dentist Austin", 900, 10),
                KeywordData("dental implants austin", 300, 30),
                KeywordData("tooth gems", 50, 10),
                KeywordData("all on 4", 700, 60),
                KeywordData("emergency dentist austin", 400, 20),
                KeywordData("sedation dentistry", 800, 59),
            ],
        }
        gaps = find_keyword_gaps(
            [SearchQuery("dentist austin")],
            [KeywordData("dental implants austin", 300, 30)],
            [competitor],
        )
        assert [g.keyword for g in gaps] == ["sedation dentistry", "emergency dentist austin"]

    @pytest.mark.unit
    def test_deduped_across_competitors_and_capped(self):
        many = [KeywordData(f"kw {i}", 100 + i, 10) for i in range(60)]
        gaps = find_keyword_gaps(
            [],
            [],
            [{"competitor": "A", "keywords": many}, {"competitor": "B", "keywords": many[:5]}],
        )
        assert len(gaps) == GAP_LIMIT
        assert gaps[0].keyword == "kw 59"
        assert len({g.keyword for g in gaps}) == GAP_LIMIT


class TestRoute:

    @pytest.mark.unit
    def test_linear_then_end(self):
        state = ScholarState(account=Account("a", "A", "a.test"), run_id="r", site_url="x")
        state.stage = ScholarStage.PRIORITIZE
        assert route(state) == ScholarStage.SAVE_RESULTS
        state.stage = ScholarStage.SAVE_RESULTS
        assert route(state) == ScholarStage.END
        state.stage = ScholarStage.FETCH_SEARCH_PERFORMANCE
        state.error = "boom"
        assert route(state) == ScholarStage.END


# ===================================================================
# Full runs
# ===================================================================

@pytest.fixture
def research_data(search_console_client, keyword_client, fake_completion):
    search_console_client.get_top_queries = AsyncMock(
        return_value=[SearchQuery("dentist austin", clicks=12, impressions=340)]
    )
    keyword_client.bulk_keyword_research = AsyncMock(
        return_value=[KeywordData("dental implants austin", 300, 30)]
    )
    keyword_client.get_competitor_keywords = AsyncMock(
        return_value=[
            KeywordData("emergency dentist austin", 400, 20),
            KeywordData("dental implants austin", 300, 30),
            KeywordData("hard keyword", 500, 80),
        ]
    )
    fake_completion.complete_json = AsyncMock(return_value=PRIORITIZED_REPLY)


class TestRunScholar:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_run(
        self, ctx, account, research_data, search_console_client, keyword_client, fake_completion
    ):
        result = await run_scholar(ctx, "acct-1")

        assert result.status == "completed"
        assert result.keywords_found == 2
        assert result.gap_keywords == 1
        assert result.content_topics == [
            Topic("emergency dentist austin", "What To Do In A Dental Emergency", "Same-day care", 400)
        ]

        site_url = search_console_client.get_top_queries.call_args.args[0]
        assert site_url == "sc-domain:brightsmiles.test"
        seeds = keyword_client.bulk_keyword_research.call_args.args[0]
        assert "dental implants Austin" in seeds
        keyword_client.get_competitor_keywords.assert_awaited_once_with("rival.test")
        assert fake_completion.complete_json.call_args.kwargs["max_tokens"] == 4096
        keyword_client.close.assert_awaited_once()
        search_console_client.close.assert_awaited_once()

        stored = {k.keyword: k for k in ctx.datastore.list_keywords("acct-1")}
        assert set(stored) == {"emergency dentist austin", "dental implants austin"}
        assert stored["emergency dentist austin"].keyword_type == "gap"

        items = ctx.datastore.list_queue_items(account_id="acct-1")
        assert len(items) == 1
        assert items[0].action_type == "content_recommendation"
        assert items[0].agent == "scholar"
        assert items[0].autonomy_tier == 1
        assert items[0].proposed_data["keyword"] == "emergency dentist austin"

        run = ctx.datastore.get_run(result.run_id)
        assert run.status == "completed"
        assert run.pipeline == "scholar"
        assert run.result == {"keywords_tracked": 2, "content_topics": 1, "gap_keywords": 1}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_loose_numbers_from_model_are_coerced(self, ctx, account, research_data, fake_completion):
        fake_completion.complete_json = AsyncMock(
            return_value={
                "prioritizedKeywords": [
                    {"keyword": "emergency dentist austin", "searchVolume": "1,200",
                     "difficulty": "high", "priority": "~1"},
                    {"keyword": "dental implants austin", "searchVolume": 300.0,
                     "difficulty": None, "priority": 2},
                ],
                "contentTopics": [
                    {"keyword": "emergency dentist austin", "suggestedTitle": "Dental Emergencies",
                     "estimatedVolume": "about 400/mo"},
                ],
            }
        )
        result = await run_scholar(ctx, "acct-1")

        assert result.status == "completed"
        assert result.keywords_found == 2
        assert result.content_topics[0].estimated_volume == 400
        stored = {k.keyword: k for k in ctx.datastore.list_keywords("acct-1")}
        assert stored["emergency dentist austin"].search_volume == 1200
        assert stored["emergency dentist austin"].difficulty == 0
        assert stored["dental implants austin"].search_volume == 300

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stage_failure_fails_run_and_saves_nothing(
        self, ctx, account, research_data, fake_completion, keyword_client
    ):
        fake_completion.complete_json = AsyncMock(side_effect=CompletionError("model down"))
        result = await run_scholar(ctx, "acct-1")

        assert result.status == "failed"
        assert result.error == "CompletionError: model down"
        assert result.content_topics == []
        assert ctx.datastore.list_keywords("acct-1") == []
        assert ctx.datastore.list_queue_items() == []

        run = ctx.datastore.get_run(result.run_id)
        assert run.status == "failed"
        assert run.error == "CompletionError: model down"
        ctx.effects.notifier.assert_called_once()
        keyword_client.close.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_search_console_failure_stops_pipeline(
        self, ctx, account, search_console_client, keyword_client
    ):
        search_console_client.get_top_queries = AsyncMock(side_effect=RuntimeError("gsc down"))
        result = await run_scholar(ctx, "acct-1")
        assert result.status == "failed"
        keyword_client.bulk_keyword_research.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_competitors_without_domain_skipped(
        self, ctx, account, research_data, keyword_client
    ):
        ctx.datastore.update_account("acct-1", competitors=[{"name": "No Site"}])
        result = await run_scholar(ctx, "acct-1")
        assert result.status == "completed"
        keyword_client.get_competitor_keywords.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_input_validation(self, ctx, account):
        with pytest.raises(ValidationError):
            await run_scholar(ctx, "")
        with pytest.raises(NotFoundError):
            await run_scholar(ctx, "missing")
        assert ctx.datastore.list_runs() == []
