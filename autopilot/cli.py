"""
Practice Autopilot CLI

Usage:
    autopilot conductor --account <id>
    autopilot weekly
    autopilot scholar --account <id>
    autopilot ghostwriter --account <id> --keyword "dental implants" [--title ...] [--angle ...]
    autopilot queue approve <item_id> --by <name>
    autopilot queue reject <item_id> [--by <name>]
    autopilot queue bulk-approve <id> [<id> ...] --by <name>
    autopilot rollback --content <piece_id>
    autopilot gbp publish-scheduled
    autopilot compliance --file page.html [--vertical dental] [--rules-only]
    autopilot serve [--port 8780]

Global flags:
    --verbose    Debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from autopilot import __version__
from autopilot.compliance import ComplianceEngine, check_plain
from autopilot.conductor import run_conductor, run_weekly_pipeline
from autopilot.config import configure_logging, load_settings
from autopilot.context import AgentContext, build_context
from autopilot.errors import AutopilotError
from autopilot.gbp_scheduler import publish_scheduled_posts
from autopilot.ghostwriter import run_ghostwriter
from autopilot.llm import CompletionService
from autopilot.models import RunStatus, Topic
from autopilot.review_queue import approve, bulk_approve, reject, rollback
from autopilot.scholar import run_scholar

logger = logging.getLogger("autopilot.cli")


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _cmd_conductor(ctx: AgentContext, args: argparse.Namespace) -> int:
    result = await run_conductor(ctx, args.account)
    _emit(result.to_dict())
    return 1 if result.status == RunStatus.FAILED.value else 0


async def _cmd_weekly(ctx: AgentContext, args: argparse.Namespace) -> int:
    _emit(await run_weekly_pipeline(ctx))
    return 0


async def _cmd_scholar(ctx: AgentContext, args: argparse.Namespace) -> int:
    result = await run_scholar(ctx, args.account)
    _emit(result.to_dict())
    return 1 if result.status == RunStatus.FAILED.value else 0


async def _cmd_ghostwriter(ctx: AgentContext, args: argparse.Namespace) -> int:
    topic = Topic(
        keyword=args.keyword,
        suggested_title=args.title or args.keyword.title(),
        angle=args.angle or "",
    )
    result = await run_ghostwriter(ctx, args.account, topic)
    _emit(result.to_dict())
    return 1 if result.status == RunStatus.FAILED.value else 0


async def _cmd_queue(ctx: AgentContext, args: argparse.Namespace) -> int:
    if args.queue_command == "approve":
        outcome = await approve(ctx, args.item_id, args.by)
        _emit(outcome)
        return 1 if outcome["deployment_error"] else 0
    if args.queue_command == "reject":
        _emit(reject(ctx, args.item_id, args.by).to_dict())
        return 0
    summary = await bulk_approve(ctx, args.item_ids, args.by)
    _emit(summary)
    return 1 if summary["failed"] else 0


async def _cmd_rollback(ctx: AgentContext, args: argparse.Namespace) -> int:
    _emit(await rollback(ctx, args.content))
    return 0


async def _cmd_gbp(ctx: AgentContext, args: argparse.Namespace) -> int:
    summary = await publish_scheduled_posts(ctx)
    _emit(summary)
    return 1 if summary["failed"] else 0


_CONTEXT_COMMANDS: Dict[str, Callable[[AgentContext, argparse.Namespace], Any]] = {
    "conductor": _cmd_conductor,
    "weekly": _cmd_weekly,
    "scholar": _cmd_scholar,
    "ghostwriter": _cmd_ghostwriter,
    "queue": _cmd_queue,
    "rollback": _cmd_rollback,
    "gbp": _cmd_gbp,
}


def _cmd_compliance(args: argparse.Namespace) -> int:
    """Check a local HTML file. Needs no datastore or encryption key."""
    markup = Path(args.file).read_text(encoding="utf-8")
    if args.rules_only:
        result = check_plain(markup)
    else:
        settings = load_settings()
        engine = ComplianceEngine(
            CompletionService(
                api_key=settings.anthropic_api_key,
                content_model=settings.model_content,
                review_model=settings.model_review,
            )
        )
        result = asyncio.run(engine.check(markup, args.vertical))
    _emit(result.to_dict())
    return 1 if result.status == "block" else 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("autopilot.api:app", host=args.host, port=args.port, log_level="info")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autopilot",
        description="Practice Autopilot: agentic marketing for healthcare practices",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"autopilot {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("conductor", help="Run one full cycle for an account")
    p.add_argument("--account", required=True)

    sub.add_parser("weekly", help="Run the weekly pipeline for every active account")

    p = sub.add_parser("scholar", help="Run keyword research for an account")
    p.add_argument("--account", required=True)

    p = sub.add_parser("ghostwriter", help="Write one piece for a keyword")
    p.add_argument("--account", required=True)
    p.add_argument("--keyword", required=True)
    p.add_argument("--title")
    p.add_argument("--angle")

    p = sub.add_parser("queue", help="Act on review queue items")
    qsub = p.add_subparsers(dest="queue_command", required=True)
    q = qsub.add_parser("approve", help="Approve one pending item")
    q.add_argument("item_id")
    q.add_argument("--by", required=True)
    q = qsub.add_parser("reject", help="Reject one pending item")
    q.add_argument("item_id")
    q.add_argument("--by")
    q = qsub.add_parser("bulk-approve", help="Approve several items")
    q.add_argument("item_ids", nargs="+")
    q.add_argument("--by", required=True)

    p = sub.add_parser("rollback", help="Unpublish a deployed content piece")
    p.add_argument("--content", required=True)

    p = sub.add_parser("gbp", help="Google Business Profile posts")
    gsub = p.add_subparsers(dest="gbp_command", required=True)
    gsub.add_parser("publish-scheduled", help="Publish every due scheduled post")

    p = sub.add_parser("compliance", help="Check an HTML file for compliance issues")
    p.add_argument("--file", required=True)
    p.add_argument("--vertical", default="dental")
    p.add_argument("--rules-only", action="store_true", help="Skip the AI review")

    p = sub.add_parser("serve", help="Start the API server")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8780)

    return parser


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Returns an exit code (0 = success, 1 = error, 2 = usage error)."""
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        if args.command == "compliance":
            return _cmd_compliance(args)
        if args.command == "serve":
            return _cmd_serve(args)
        ctx = build_context(settings)
        return asyncio.run(_CONTEXT_COMMANDS[args.command](ctx, args))
    except AutopilotError as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
