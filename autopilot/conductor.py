"""
Conductor: one account's weekly marketing cycle.

    check_health --active--> run_scholar -> run_ghostwriter -> finalize -> end
    check_health --inactive--> finalize (completed, skipped) -> end

Scholar failure fails the cycle. Ghostwriter runs once per selected topic,
sequentially; a failed topic is recorded and the remaining topics still
run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from autopilot.context import AgentContext
from autopilot.effects import SideEffect, finalize_effects
from autopilot.errors import ValidationError, describe_error
from autopilot.ghostwriter import run_ghostwriter
from autopilot.models import (
    AccountHealth,
    PipelineName,
    Run,
    RunStatus,
    RunTrigger,
)
from autopilot.scholar import ScholarResult, run_scholar
from autopilot.state_machine import run_state_machine

logger = logging.getLogger("autopilot.conductor")

TOPICS_PER_CYCLE = 2


class ConductorStage(str, Enum):
    CHECK_HEALTH = "check_health"
    RUN_SCHOLAR = "run_scholar"
    RUN_GHOSTWRITER = "run_ghostwriter"
    FINALIZE = "finalize"
    END = "end"


@dataclass
class ConductorState:
    account_id: str
    run_id: str
    stage: Optional[ConductorStage] = None
    error: Optional[str] = None
    history: List[str] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    scholar: Optional[ScholarResult] = None
    ghostwriter_results: List[Dict[str, Any]] = field(default_factory=list)
    result: Dict[str, Any] = field(default_factory=dict)
    effects: List[SideEffect] = field(default_factory=list)

    @property
    def content_pieces_generated(self) -> int:
        return sum(1 for r in self.ghostwriter_results if r.get("content_piece_id"))


@dataclass
class ConductorResult:
    run_id: str
    status: str
    skipped: bool = False
    scholar_keywords: int = 0
    content_pieces_generated: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


def route(state: ConductorState) -> ConductorStage:
    if state.stage == ConductorStage.FINALIZE or state.stage is None:
        return ConductorStage.END
    if state.error or state.skipped:
        return ConductorStage.FINALIZE
    if state.stage == ConductorStage.CHECK_HEALTH:
        return ConductorStage.RUN_SCHOLAR
    if state.stage == ConductorStage.RUN_SCHOLAR:
        return ConductorStage.RUN_GHOSTWRITER
    return ConductorStage.FINALIZE


class ConductorPipeline:
    def __init__(self, ctx: AgentContext) -> None:
        self.ctx = ctx
        self._stage_map = {
            ConductorStage.CHECK_HEALTH: self._stage_check_health,
            ConductorStage.RUN_SCHOLAR: self._stage_run_scholar,
            ConductorStage.RUN_GHOSTWRITER: self._stage_run_ghostwriter,
            ConductorStage.FINALIZE: self._stage_finalize,
        }

    async def run(self, state: ConductorState) -> ConductorState:
        return await run_state_machine(
            state,
            ConductorStage.CHECK_HEALTH,
            ConductorStage.END,
            self._stage_map,
            route,
            name=f"conductor[{state.run_id[:8]}]",
        )

    async def _stage_check_health(self, state: ConductorState) -> None:
        account = self.ctx.datastore.get_account(state.account_id)
        if account.account_health != AccountHealth.ACTIVE.value:
            state.skipped = True
            state.skip_reason = f"Account health is {account.account_health}"
            logger.info("Skipping %s: %s", state.account_id, state.skip_reason)
            return
        # Raises TokenRefreshError (and flags the account) when the grant is gone.
        await self.ctx.tokens.refresh_if_needed(state.account_id)

    async def _stage_run_scholar(self, state: ConductorState) -> None:
        state.scholar = await run_scholar(
            self.ctx, state.account_id, trigger=RunTrigger.CONDUCTOR.value
        )
        if state.scholar.status == RunStatus.FAILED.value:
            state.error = state.scholar.error or "Scholar run failed"

    async def _stage_run_ghostwriter(self, state: ConductorState) -> None:
        topics = state.scholar.content_topics[:TOPICS_PER_CYCLE] if state.scholar else []
        for topic in topics:
            try:
                result = await run_ghostwriter(
                    self.ctx, state.account_id, topic, trigger=RunTrigger.CONDUCTOR.value
                )
                state.ghostwriter_results.append(
                    {
                        "keyword": topic.keyword,
                        "run_id": result.run_id,
                        "status": result.status,
                        "content_piece_id": result.content_piece_id,
                        "error": result.error,
                    }
                )
            except Exception as exc:
                logger.error("Ghostwriter failed for '%s': %s", topic.keyword, exc)
                state.ghostwriter_results.append(
                    {
                        "keyword": topic.keyword,
                        "status": RunStatus.FAILED.value,
                        "content_piece_id": None,
                        "error": describe_error(exc),
                    }
                )

    async def _stage_finalize(self, state: ConductorState) -> None:
        if state.skipped:
            state.result = {"skipped": True, "reason": state.skip_reason}
        else:
            state.result = {
                "scholar_run_id": state.scholar.run_id if state.scholar else None,
                "scholar_keywords": state.scholar.keywords_found if state.scholar else 0,
                "content_pieces_generated": state.content_pieces_generated,
                "ghostwriter_results": state.ghostwriter_results,
            }
        state.effects = finalize_effects(
            state.run_id,
            state.account_id,
            PipelineName.CONDUCTOR.value,
            state.result,
            state.error,
        )


async def run_conductor(
    ctx: AgentContext,
    account_id: str,
    trigger: str = RunTrigger.MANUAL.value,
) -> ConductorResult:
    """Run one full cycle for *account_id* and record its outcome."""
    if not account_id:
        raise ValidationError("account_id is required")
    ctx.datastore.get_account(account_id)

    run = ctx.datastore.create_run(
        Run(account_id=account_id, pipeline=PipelineName.CONDUCTOR.value, trigger=trigger)
    )
    logger.info("Conductor run %s started for %s", run.id[:8], account_id)
    state = ConductorState(account_id=account_id, run_id=run.id)
    await ConductorPipeline(ctx).run(state)

    if not state.effects:
        state.effects = finalize_effects(
            run.id, account_id, PipelineName.CONDUCTOR.value, state.result, state.error
        )
    ctx.effects.execute(state.effects)

    status = RunStatus.FAILED.value if state.error else RunStatus.COMPLETED.value
    logger.info("Conductor run %s %s", run.id[:8], status)
    return ConductorResult(
        run_id=run.id,
        status=status,
        skipped=state.skipped,
        scholar_keywords=state.scholar.keywords_found if state.scholar else 0,
        content_pieces_generated=state.content_pieces_generated,
        error=state.error,
    )


async def run_weekly_pipeline(ctx: AgentContext) -> Dict[str, Any]:
    """One Conductor cycle per active account, sequentially."""
    accounts = ctx.datastore.list_accounts(health=AccountHealth.ACTIVE.value)
    results: List[Dict[str, Any]] = []
    for account in accounts:
        try:
            outcome = await run_conductor(ctx, account.id, trigger=RunTrigger.SCHEDULED.value)
            results.append({"account_id": account.id, "status": outcome.status})
        except Exception as exc:
            logger.error("Weekly pipeline failed for %s: %s", account.id, exc)
            results.append(
                {"account_id": account.id, "status": "error", "error": describe_error(exc)}
            )
    logger.info("Weekly pipeline triggered %d accounts", len(accounts))
    return {"triggered": len(accounts), "results": results}
