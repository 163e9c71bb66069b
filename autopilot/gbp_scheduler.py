"""
Scheduled Google Business Profile posts.

Posts are stored with status ``scheduled`` and published by a cron-driven
call to ``publish_scheduled_posts``. A post that fails to publish stays
``scheduled`` and is retried on the next call.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from autopilot.context import AgentContext
from autopilot.errors import AutopilotError, ValidationError
from autopilot.llm import extract_json

logger = logging.getLogger("autopilot.gbp_scheduler")

WEEKLY_DRAFTS = 2
CTA_TYPES = ("BOOK", "CALL", "LEARN_MORE")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def schedule_post(
    ctx: AgentContext,
    account_id: str,
    body: str,
    scheduled_for: datetime,
    *,
    title: Optional[str] = None,
    post_type: str = "update",
    image_url: Optional[str] = None,
    cta_type: Optional[str] = None,
    cta_url: Optional[str] = None,
) -> Dict[str, Any]:
    if not body.strip():
        raise ValidationError("Post body is required")
    ctx.datastore.get_account(account_id)
    if scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
    post = {
        "id": str(uuid.uuid4()),
        "account_id": account_id,
        "post_type": post_type,
        "title": title,
        "body": body,
        "image_url": image_url,
        "cta_type": cta_type,
        "cta_url": cta_url,
        "status": "scheduled",
        "scheduled_for": scheduled_for.isoformat(),
        "published_at": None,
        "gbp_post_id": None,
    }
    ctx.datastore.save_gbp_post(post)
    logger.info("Scheduled GBP post %s for %s", post["id"][:8], post["scheduled_for"])
    return post


async def publish_scheduled_posts(
    ctx: AgentContext, now: Optional[datetime] = None
) -> Dict[str, int]:
    """Publish every due scheduled post. Returns ``{published, failed}``."""
    now = now or _now()
    due = [
        p for p in ctx.datastore.list_gbp_posts(status="scheduled")
        if datetime.fromisoformat(p["scheduled_for"]) <= now
    ]
    published = 0
    failed = 0
    for post in due:
        client = ctx.business_profile(post["account_id"])
        try:
            locations = await client.get_locations()
            if not locations:
                logger.warning("No GBP locations for %s", post["account_id"])
                failed += 1
                continue
            cta = None
            if post.get("cta_type"):
                cta = {"action_type": post["cta_type"], "url": post.get("cta_url") or ""}
            result = await client.create_post(
                locations[0]["location_id"],
                post["body"],
                "STANDARD",
                call_to_action=cta,
                media_url=post.get("image_url"),
            )
            ctx.datastore.update_gbp_post(
                post["id"],
                status="published",
                published_at=_now().isoformat(),
                gbp_post_id=result.get("name"),
            )
            published += 1
        except AutopilotError as exc:
            logger.error("GBP post %s failed: %s", post["id"][:8], exc)
            failed += 1
        finally:
            await client.close()
    return {"published": published, "failed": failed}


async def generate_weekly_posts(ctx: AgentContext, account_id: str) -> List[Dict[str, str]]:
    """Two AI drafts for the account's profile. Empty when the reply is unusable."""
    account = ctx.datastore.get_account(account_id)
    practice_name = account.practice_profile.get("name") or account.name
    month = _now().strftime("%B")
    prompt = (
        f"You are a {account.vertical} marketing assistant creating Google Business Profile posts.\n\n"
        f"Practice: {practice_name}\n"
        f"Domain: {account.domain}\n"
        f"Month: {month}\n\n"
        f"Generate exactly {WEEKLY_DRAFTS} GBP post drafts. Each post should be:\n"
        "- 150-300 words\n"
        "- Engaging, professional practice tone\n"
        f"- Include a seasonal or educational angle relevant to {month}\n"
        "- Avoid medical claims or guarantees\n"
        "- Include a call-to-action\n\n"
        'Return ONLY a JSON array: [{"title": "...", "body": "...", '
        '"ctaType": "BOOK" | "CALL" | "LEARN_MORE"}]'
    )
    reply = await ctx.completion.complete(prompt, max_tokens=1024)
    try:
        drafts = extract_json(reply)
    except ValueError:
        logger.warning("Unparseable GBP drafts for %s", account_id)
        return []
    if not isinstance(drafts, list):
        return []
    return [
        {
            "title": str(d.get("title", "")),
            "body": str(d.get("body", "")),
            "cta_type": d.get("ctaType") if d.get("ctaType") in CTA_TYPES else "LEARN_MORE",
        }
        for d in drafts[:WEEKLY_DRAFTS]
        if isinstance(d, dict) and d.get("body")
    ]
