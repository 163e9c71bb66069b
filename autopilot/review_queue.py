"""
Review queue operations: approve, reject, bulk approve and rollback.

Approving a content action publishes the linked piece through the
account's publisher. A publication failure leaves the item ``approved``
and reports the error so a reviewer can retry; it does not undo the
approval.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from autopilot.context import AgentContext
from autopilot.errors import AutopilotError, InvalidTransitionError, ValidationError
from autopilot.models import (
    CONTENT_ACTIONS,
    ContentStatus,
    QueueStatus,
    ReviewQueueItem,
)
from autopilot.wordpress_client import seo_meta

logger = logging.getLogger("autopilot.review_queue")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _publish(ctx: AgentContext, item: ReviewQueueItem) -> Dict[str, Any]:
    if not item.content_piece_id:
        raise ValidationError(f"Queue item {item.id} has no content piece")
    piece = ctx.datastore.get_content_piece(item.content_piece_id)
    account = ctx.datastore.get_account(item.account_id)
    publisher = ctx.publisher(account)
    try:
        return await publisher.publish_post(
            piece.title,
            piece.body_html,
            status="publish",
            meta=seo_meta(piece.meta_title, piece.meta_description),
        )
    finally:
        await publisher.close()


async def approve(ctx: AgentContext, item_id: str, approver: str) -> Dict[str, Any]:
    """Approve a pending item and deploy it when it is a content action."""
    store = ctx.datastore
    item = store.get_queue_item(item_id)
    if item.status != QueueStatus.PENDING.value:
        raise InvalidTransitionError("not pending")

    with store.transaction():
        item = store.update_queue_item(
            item_id,
            status=QueueStatus.APPROVED.value,
            approved_by=approver,
            approved_at=_now_iso(),
        )
        if item.content_piece_id:
            store.update_content_piece(item.content_piece_id, status=ContentStatus.APPROVED.value)

    outcome: Dict[str, Any] = {
        "id": item_id,
        "status": item.status,
        "published_url": None,
        "deployment_error": None,
    }
    if item.action_type not in CONTENT_ACTIONS:
        return outcome

    try:
        post = await _publish(ctx, item)
    except AutopilotError as exc:
        logger.error("Publishing queue item %s failed: %s", item_id, exc)
        outcome["deployment_error"] = str(exc)
        return outcome

    published_at = _now_iso()
    with store.transaction():
        store.update_queue_item(
            item_id,
            status=QueueStatus.DEPLOYED.value,
            deployed_at=published_at,
            rollback_data={"wordpress_post_id": post["id"]},
        )
        store.update_content_piece(
            item.content_piece_id,
            status=ContentStatus.PUBLISHED.value,
            published_url=post.get("link") or None,
            published_at=published_at,
        )
    logger.info("Deployed queue item %s as post %s", item_id, post["id"])
    outcome.update(status=QueueStatus.DEPLOYED.value, published_url=post.get("link"))
    return outcome


def reject(ctx: AgentContext, item_id: str, reviewer: Optional[str] = None) -> ReviewQueueItem:
    store = ctx.datastore
    item = store.get_queue_item(item_id)
    if item.status != QueueStatus.PENDING.value:
        raise InvalidTransitionError("not pending")
    with store.transaction():
        item = store.update_queue_item(
            item_id,
            status=QueueStatus.REJECTED.value,
            approved_by=reviewer,
            approved_at=_now_iso(),
        )
        if item.content_piece_id:
            store.update_content_piece(item.content_piece_id, status=ContentStatus.REJECTED.value)
    logger.info("Rejected queue item %s", item_id)
    return item


async def bulk_approve(ctx: AgentContext, item_ids: List[str], approver: str) -> Dict[str, Any]:
    """Approve each id in order. One failure never stops the rest."""
    approved = 0
    errors: List[Dict[str, str]] = []
    deployment_errors: List[Dict[str, str]] = []
    for item_id in item_ids:
        try:
            outcome = await approve(ctx, item_id, approver)
        except AutopilotError as exc:
            errors.append({"id": item_id, "error": str(exc)})
            continue
        approved += 1
        if outcome["deployment_error"]:
            deployment_errors.append({"id": item_id, "error": outcome["deployment_error"]})
    return {
        "approved": approved,
        "failed": len(errors),
        "errors": errors,
        "deployment_errors": deployment_errors,
    }


async def rollback(ctx: AgentContext, content_piece_id: str) -> Dict[str, Any]:
    """Unpublish a deployed piece and return it to ``approved``."""
    store = ctx.datastore
    piece = store.get_content_piece(content_piece_id)
    if piece.status != ContentStatus.PUBLISHED.value:
        raise InvalidTransitionError(f"Content piece {content_piece_id} is not published")
    item = store.latest_deployed_item(content_piece_id)
    post_id = (item.rollback_data or {}).get("wordpress_post_id") if item else None
    if item is None or post_id is None:
        raise InvalidTransitionError(f"No deployed action with a post id for {content_piece_id}")

    account = store.get_account(piece.account_id)
    publisher = ctx.publisher(account)
    try:
        await publisher.unpublish_post(post_id)
    finally:
        await publisher.close()

    with store.transaction():
        store.update_content_piece(
            content_piece_id,
            status=ContentStatus.APPROVED.value,
            published_url=None,
            published_at=None,
        )
        store.update_queue_item(item.id, status=QueueStatus.ROLLED_BACK.value)
    logger.info("Rolled back content piece %s (post %s)", content_piece_id, post_id)
    return {"content_piece_id": content_piece_id, "queue_item_id": item.id, "wordpress_post_id": post_id}
