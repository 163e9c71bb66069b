"""
Ghostwriter: content generation and compliance pipeline.

Stages:

    generate_brief -> write_content -> score_seo -> check_compliance
        -> handle_compliance -> (check_compliance again after a rewrite,
           at most 2 rewrites) -> queue_for_review -> end

Compliance never fails a run. A draft still blocked after two targeted
rewrites is queued for human review with ``critical`` severity.
"""

from __future__ import annotations

import json
import logging
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
    ComplianceResult,
    ComplianceStatus,
    ContentPiece,
    ContentStatus,
    ContentType,
    PipelineName,
    ReviewQueueItem,
    Run,
    RunStatus,
    RunTrigger,
    Severity,
    Topic,
)
from autopilot.seo import count_words, score_seo
from autopilot.state_machine import run_state_machine

logger = logging.getLogger("autopilot.ghostwriter")

MAX_REWRITE_ATTEMPTS = 2
DEFAULT_WORD_COUNT = 1200


class GhostwriterStage(str, Enum):
    GENERATE_BRIEF = "generate_brief"
    WRITE_CONTENT = "write_content"
    SCORE_SEO = "score_seo"
    CHECK_COMPLIANCE = "check_compliance"
    HANDLE_COMPLIANCE = "handle_compliance"
    QUEUE_FOR_REVIEW = "queue_for_review"
    END = "end"


_LINEAR_NEXT = {
    GhostwriterStage.GENERATE_BRIEF: GhostwriterStage.WRITE_CONTENT,
    GhostwriterStage.WRITE_CONTENT: GhostwriterStage.SCORE_SEO,
    GhostwriterStage.SCORE_SEO: GhostwriterStage.CHECK_COMPLIANCE,
    GhostwriterStage.CHECK_COMPLIANCE: GhostwriterStage.HANDLE_COMPLIANCE,
    GhostwriterStage.QUEUE_FOR_REVIEW: GhostwriterStage.END,
}


@dataclass
class GhostwriterState:
    account: Account
    topic: Topic
    run_id: str
    stage: Optional[GhostwriterStage] = None
    error: Optional[str] = None
    history: List[str] = field(default_factory=list)
    brief: Dict[str, Any] = field(default_factory=dict)
    html: str = ""
    markdown: str = ""
    word_count: int = 0
    meta_title: str = ""
    meta_description: str = ""
    seo_score: int = 0
    compliance: Optional[ComplianceResult] = None
    rewrite_attempts: int = 0
    rewrote: bool = False
    content_piece_id: Optional[str] = None
    queue_item_id: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return (
            self.brief.get("suggestedTitle")
            or self.topic.suggested_title
            or self.topic.keyword.title()
        )

    @property
    def compliance_status(self) -> str:
        return self.compliance.status if self.compliance else ComplianceStatus.PASS.value


@dataclass
class GhostwriterResult:
    run_id: str
    status: str
    content_piece_id: Optional[str] = None
    queue_item_id: Optional[str] = None
    seo_score: int = 0
    compliance_status: Optional[str] = None
    rewrite_attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


def route(state: GhostwriterState) -> GhostwriterStage:
    """Next stage. A rewrite loops back to compliance checking."""
    if state.error or state.stage is None:
        return GhostwriterStage.END
    if state.stage == GhostwriterStage.HANDLE_COMPLIANCE:
        if state.rewrote:
            return GhostwriterStage.CHECK_COMPLIANCE
        return GhostwriterStage.QUEUE_FOR_REVIEW
    return _LINEAR_NEXT[state.stage]


def append_disclaimers(html: str, result: ComplianceResult) -> str:
    """Append each finding's disclaimer as a visible paragraph."""
    disclaimers = [d.disclaimer for d in result.details if d.disclaimer]
    if not disclaimers:
        return html
    paragraphs = "\n".join(f'<p class="disclaimer"><em>{d}</em></p>' for d in disclaimers)
    return f"{html}\n{paragraphs}"


def flagged_passages(result: ComplianceResult) -> str:
    lines = []
    for d in result.details:
        if d.severity != "block":
            continue
        line = f'- "{d.phrase}": {d.reason}'
        if d.suggestion:
            line += f". Fix: {d.suggestion}"
        lines.append(line)
    return "\n".join(lines)


def _practice_line(profile: Dict[str, Any]) -> str:
    name = profile.get("practice_name") or profile.get("name") or "our practice"
    city = profile.get("city") or ""
    line = f"Practice: {name}" + (f" in {city}" if city else "")
    doctors = profile.get("doctors") or []
    if doctors:
        line += f"\nDoctors: {', '.join(doctors)}"
    return line


class GhostwriterPipeline:
    """Stage handlers bound to one context."""

    def __init__(self, ctx: AgentContext) -> None:
        self.ctx = ctx
        self._stage_map = {
            GhostwriterStage.GENERATE_BRIEF: self._stage_generate_brief,
            GhostwriterStage.WRITE_CONTENT: self._stage_write_content,
            GhostwriterStage.SCORE_SEO: self._stage_score_seo,
            GhostwriterStage.CHECK_COMPLIANCE: self._stage_check_compliance,
            GhostwriterStage.HANDLE_COMPLIANCE: self._stage_handle_compliance,
            GhostwriterStage.QUEUE_FOR_REVIEW: self._stage_queue_for_review,
        }

    async def run(self, state: GhostwriterState) -> GhostwriterState:
        return await run_state_machine(
            state,
            GhostwriterStage.GENERATE_BRIEF,
            GhostwriterStage.END,
            self._stage_map,
            route,
            name=f"ghostwriter[{state.run_id[:8]}]",
        )

    async def _stage_generate_brief(self, state: GhostwriterState) -> None:
        vertical = state.account.vertical
        prompt = (
            f"Create a content brief for a {vertical} practice blog post.\n\n"
            f"Practice profile:\n{json.dumps(state.account.practice_profile, indent=2)}\n\n"
            f'Target keyword: "{state.topic.keyword}"\n'
            f'Suggested title: "{state.topic.suggested_title}"\n'
            f'Angle: "{state.topic.angle}"\n\n'
            "Return JSON:\n"
            '{"suggestedTitle": "SEO-optimized title with keyword", '
            '"h2Sections": ["Section 1", "Section 2"], '
            f'"targetWordCount": {DEFAULT_WORD_COUNT}, '
            '"internalLinks": ["suggested internal page links"], '
            '"uniqueAngles": ["angles to differentiate from competitors"], '
            '"practiceHooks": ["practice-specific details to weave in"]}'
        )
        parsed = await self.ctx.completion.complete_json(
            prompt,
            system=(
                f"You are an expert {vertical} SEO content strategist. "
                "Generate a detailed content brief. Always respond with valid JSON."
            ),
            max_tokens=2048,
        )
        if not isinstance(parsed, dict):
            raise ValueError("Brief response was not a JSON object")
        state.brief = {
            "suggestedTitle": parsed.get("suggestedTitle") or state.topic.suggested_title,
            "h2Sections": parsed.get("h2Sections") or [],
            "targetWordCount": parsed.get("targetWordCount") or DEFAULT_WORD_COUNT,
            "internalLinks": parsed.get("internalLinks") or [],
            "uniqueAngles": parsed.get("uniqueAngles") or [],
            "practiceHooks": parsed.get("practiceHooks") or [],
        }

    async def _stage_write_content(self, state: GhostwriterState) -> None:
        brief = state.brief
        system = (
            f"You are a professional {state.account.vertical} content writer. "
            "Write warm, professional content that:\n"
            "- Uses a conversational yet authoritative tone\n"
            "- Weaves in practice-specific details (doctor names, location)\n"
            "- Maintains 2-3% keyword density for the target keyword\n"
            "- Targets an 8th grade reading level\n"
            "- Includes a FAQ section with 3-4 questions\n"
            "- Never gives specific medical advice or diagnoses\n"
            "- Uses proper HTML formatting (h1, h2, h3, p, ul, li tags)\n\n"
            f"{_practice_line(state.account.practice_profile)}\n\n"
            "Return JSON with html, markdown, metaTitle, metaDescription."
        )
        prompt = (
            "Write a blog post based on this brief:\n\n"
            f'Title: "{state.title}"\n'
            f'Target keyword: "{state.topic.keyword}"\n'
            f"Sections: {json.dumps(brief.get('h2Sections', []))}\n"
            f"Target word count: {brief.get('targetWordCount', DEFAULT_WORD_COUNT)}\n"
            f"Internal links: {json.dumps(brief.get('internalLinks', []))}\n"
            f"Unique angles: {json.dumps(brief.get('uniqueAngles', []))}\n"
            f"Practice hooks: {json.dumps(brief.get('practiceHooks', []))}\n\n"
            "Return JSON:\n"
            '{"html": "<h1>Title</h1><p>...</p>", "markdown": "# Title\\n\\n...", '
            '"metaTitle": "50-70 char SEO title", '
            '"metaDescription": "120-160 char meta description"}'
        )
        parsed = await self.ctx.completion.complete_json(prompt, system=system, max_tokens=4096)
        if not isinstance(parsed, dict) or not parsed.get("html"):
            raise ValueError("Draft response did not include html")
        state.html = parsed["html"]
        state.markdown = parsed.get("markdown") or ""
        state.meta_title = parsed.get("metaTitle") or ""
        state.meta_description = parsed.get("metaDescription") or ""
        state.word_count = count_words(state.html)
        logger.info("Drafted %d words for '%s'", state.word_count, state.topic.keyword)

    async def _stage_score_seo(self, state: GhostwriterState) -> None:
        state.seo_score = score_seo(
            state.html, state.topic.keyword, state.meta_title, state.meta_description
        )

    async def _stage_check_compliance(self, state: GhostwriterState) -> None:
        state.compliance = await self.ctx.compliance.check(state.html, state.account.vertical)

    async def _stage_handle_compliance(self, state: GhostwriterState) -> None:
        state.rewrote = False
        result = state.compliance
        if result is None or result.status == ComplianceStatus.PASS.value:
            return

        if result.status == ComplianceStatus.WARN.value:
            state.html = append_disclaimers(state.html, result)
            return

        if state.rewrite_attempts >= MAX_REWRITE_ATTEMPTS:
            logger.warning(
                "Draft for '%s' still blocked after %d rewrites, queuing as critical",
                state.topic.keyword,
                state.rewrite_attempts,
            )
            return

        prompt = (
            f"Rewrite the flagged sections in this {state.account.vertical} content.\n\n"
            f"Current HTML:\n{state.html}\n\n"
            f"Compliance issues to fix:\n{flagged_passages(result)}\n\n"
            'Return JSON: {"html": "...", "markdown": "..."}'
        )
        parsed = await self.ctx.completion.complete_json(
            prompt,
            system=(
                f"You are a {state.account.vertical} content compliance editor. Rewrite ONLY "
                "the flagged sections while preserving the rest of the content. "
                "Return valid JSON with html and markdown fields."
            ),
            max_tokens=4096,
        )
        if not isinstance(parsed, dict) or not parsed.get("html"):
            raise ValueError("Rewrite response did not include html")
        state.html = parsed["html"]
        state.markdown = parsed.get("markdown") or state.markdown
        state.word_count = count_words(state.html)
        state.rewrite_attempts += 1
        state.rewrote = True
        logger.info("Rewrite %d applied for '%s'", state.rewrite_attempts, state.topic.keyword)

    async def _stage_queue_for_review(self, state: GhostwriterState) -> None:
        compliance = state.compliance or ComplianceResult(status=ComplianceStatus.PASS.value)
        blocked = compliance.status == ComplianceStatus.BLOCK.value
        piece = ContentPiece(
            account_id=state.account.id,
            title=state.title,
            body_html=state.html,
            body_markdown=state.markdown,
            content_type=ContentType.BLOG_POST.value,
            status=ContentStatus.IN_REVIEW.value,
            target_keyword=state.topic.keyword,
            seo_score=state.seo_score,
            word_count=state.word_count,
            compliance_status=compliance.status,
            compliance_details=[d.to_dict() for d in compliance.details],
            meta_title=state.meta_title,
            meta_description=state.meta_description,
        )
        item = ReviewQueueItem(
            account_id=state.account.id,
            agent=AgentName.GHOSTWRITER.value,
            action_type=ActionType.CONTENT_REVIEW.value,
            description=f'New blog post: "{piece.title}" targeting "{state.topic.keyword}"',
            proposed_data={
                "content_piece_id": piece.id,
                "seo_score": state.seo_score,
                "word_count": state.word_count,
                "compliance_status": compliance.status,
            },
            severity=Severity.CRITICAL.value if blocked else Severity.INFO.value,
            autonomy_tier=2,
            content_piece_id=piece.id,
        )
        store = self.ctx.datastore
        with store.transaction():
            store.save_content_piece(piece)
            store.save_queue_item(item)

        state.content_piece_id = piece.id
        state.queue_item_id = item.id
        state.result = {
            "content_piece_id": piece.id,
            "queue_item_id": item.id,
            "seo_score": state.seo_score,
            "compliance_status": compliance.status,
            "rewrite_attempts": state.rewrite_attempts,
        }


async def run_ghostwriter(
    ctx: AgentContext,
    account_id: str,
    topic: Topic,
    trigger: str = RunTrigger.MANUAL.value,
) -> GhostwriterResult:
    """Draft, score, screen and queue one article for *topic*."""
    if not account_id:
        raise ValidationError("account_id is required")
    if topic is None or not topic.keyword.strip():
        raise ValidationError("topic.keyword is required")
    account = ctx.datastore.get_account(account_id)

    run = ctx.datastore.create_run(
        Run(
            account_id=account_id,
            pipeline=PipelineName.GHOSTWRITER.value,
            trigger=trigger,
            config={"topic": topic.to_dict()},
        )
    )
    logger.info("Ghostwriter run %s started for '%s'", run.id[:8], topic.keyword)
    state = GhostwriterState(account=account, topic=topic, run_id=run.id)
    await GhostwriterPipeline(ctx).run(state)

    ctx.effects.execute(
        finalize_effects(
            run.id, account_id, PipelineName.GHOSTWRITER.value, state.result, state.error
        )
    )
    status = RunStatus.FAILED.value if state.error else RunStatus.COMPLETED.value
    return GhostwriterResult(
        run_id=run.id,
        status=status,
        content_piece_id=state.content_piece_id,
        queue_item_id=state.queue_item_id,
        seo_score=state.seo_score,
        compliance_status=state.compliance.status if state.compliance else None,
        rewrite_attempts=state.rewrite_attempts,
        error=state.error,
    )
