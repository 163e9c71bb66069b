"""
Practice Autopilot API Server
=============================

HTTP triggers for the agents and the review queue.

Run directly:
    python -m autopilot.api
    uvicorn autopilot.api:app --host 0.0.0.0 --port 8780

Authentication:
    /agents/*, /queue/*, /content/*, /compliance/*   X-Agent-Key header
    /cron/*                                          Authorization: Bearer CRON_SECRET
"""

from __future__ import annotations

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from autopilot import __version__
from autopilot.conductor import run_conductor, run_weekly_pipeline
from autopilot.config import configure_logging, load_settings
from autopilot.context import AgentContext, build_context
from autopilot.errors import (
    AuthorizationError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from autopilot.gbp_scheduler import publish_scheduled_posts
from autopilot.ghostwriter import run_ghostwriter
from autopilot.models import RunTrigger, Topic
from autopilot.review_queue import approve, bulk_approve, reject, rollback
from autopilot.scholar import run_scholar

logger = logging.getLogger("autopilot.api")

API_PORT = int(os.getenv("AUTOPILOT_API_PORT", "8780"))

# ---------------------------------------------------------------------------
# Pydantic Models -- Requests
# ---------------------------------------------------------------------------


class AccountRunRequest(BaseModel):
    account_id: str = Field(..., min_length=1)


class TopicModel(BaseModel):
    keyword: str = Field(..., min_length=1)
    suggested_title: str = ""
    angle: str = ""
    estimated_volume: int = Field(0, ge=0)


class GhostwriterRunRequest(BaseModel):
    account_id: str = Field(..., min_length=1)
    topic: TopicModel


class ApproveRequest(BaseModel):
    approver: str = Field(..., min_length=1)


class RejectRequest(BaseModel):
    reviewer: Optional[str] = None


class BulkApproveRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    approver: str = Field(..., min_length=1)


class ComplianceCheckRequest(BaseModel):
    html: str
    vertical: str = "dental"


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_ctx(request: Request) -> AgentContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(503, "Agent context not initialized")
    return ctx


def _matches(supplied: Optional[str], expected: str) -> bool:
    if not expected or not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def require_agent_key(
    ctx: AgentContext = Depends(get_ctx),
    x_agent_key: Optional[str] = Header(None),
) -> AgentContext:
    if not _matches(x_agent_key, ctx.settings.agent_key):
        raise AuthorizationError("Invalid or missing agent key")
    return ctx


def require_cron_secret(
    ctx: AgentContext = Depends(get_ctx),
    authorization: Optional[str] = Header(None),
) -> AgentContext:
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    if not _matches(token, ctx.settings.cron_secret):
        raise AuthorizationError("Invalid cron secret")
    return ctx


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

_ERROR_STATUS = {
    ValidationError: 400,
    AuthorizationError: 401,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    ExternalServiceError: 502,
}


def create_app(ctx: Optional[AgentContext] = None) -> FastAPI:
    """Build the FastAPI app. Without *ctx*, one is built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "ctx", None) is None:
            settings = load_settings()
            configure_logging(settings.log_level)
            app.state.ctx = build_context(settings)
            logger.info("Agent context initialized (data dir %s)", settings.data_dir)
        yield

    app = FastAPI(title="Practice Autopilot", version=__version__, lifespan=lifespan)
    app.state.ctx = ctx

    for exc_type, status in _ERROR_STATUS.items():
        def _handler(request: Request, exc: Exception, _status: int = status) -> JSONResponse:
            return JSONResponse(status_code=_status, content={"error": str(exc)})
        app.add_exception_handler(exc_type, _handler)

    @app.get("/health", tags=["Health"])
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__}

    # -- Agents ------------------------------------------------------------

    @app.post("/agents/conductor/run", tags=["Agents"])
    async def conductor_run(
        req: AccountRunRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        result = await run_conductor(ctx, req.account_id, trigger=RunTrigger.MANUAL.value)
        return result.to_dict()

    @app.post("/agents/scholar/run", tags=["Agents"])
    async def scholar_run(
        req: AccountRunRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        result = await run_scholar(ctx, req.account_id)
        return result.to_dict()

    @app.post("/agents/ghostwriter/run", tags=["Agents"])
    async def ghostwriter_run(
        req: GhostwriterRunRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        topic = Topic(**req.topic.model_dump())
        result = await run_ghostwriter(ctx, req.account_id, topic)
        return result.to_dict()

    # -- Cron --------------------------------------------------------------

    @app.get("/cron/weekly-pipeline", tags=["Cron"])
    async def cron_weekly(ctx: AgentContext = Depends(require_cron_secret)) -> Dict[str, Any]:
        return await run_weekly_pipeline(ctx)

    @app.get("/cron/publish-gbp", tags=["Cron"])
    async def cron_publish_gbp(ctx: AgentContext = Depends(require_cron_secret)) -> Dict[str, int]:
        return await publish_scheduled_posts(ctx)

    # -- Review queue -----------------------------------------------------

    @app.post("/queue/bulk-approve", tags=["Queue"])
    async def queue_bulk_approve(
        req: BulkApproveRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        return await bulk_approve(ctx, req.ids, req.approver)

    @app.post("/queue/{item_id}/approve", tags=["Queue"])
    async def queue_approve(
        item_id: str, req: ApproveRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        return await approve(ctx, item_id, req.approver)

    @app.post("/queue/{item_id}/reject", tags=["Queue"])
    async def queue_reject(
        item_id: str, req: RejectRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        return reject(ctx, item_id, req.reviewer).to_dict()

    @app.post("/content/{piece_id}/rollback", tags=["Content"])
    async def content_rollback(
        piece_id: str, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        return await rollback(ctx, piece_id)

    @app.post("/compliance/check", tags=["Compliance"])
    async def compliance_check(
        req: ComplianceCheckRequest, ctx: AgentContext = Depends(require_agent_key)
    ) -> Dict[str, Any]:
        result = await ctx.compliance.check(req.html, req.vertical)
        return result.to_dict()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("autopilot.api:app", host="0.0.0.0", port=API_PORT, log_level="info")
