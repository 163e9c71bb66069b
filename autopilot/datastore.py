"""
JSON document datastore for Practice Autopilot.

All collections live in one JSON document so that a multi-record write
(a content piece plus its review queue item) is flushed with a single
atomic ``os.replace``. Writes inside ``transaction()`` are buffered and
flushed once on exit; an exception inside the block discards them.

Data stored under: {data_dir}/autopilot.json

Usage:
    store = Datastore(Path("data"))
    with store.transaction():
        store.save_content_piece(piece)
        store.save_queue_item(item)
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from autopilot.errors import InvalidTransitionError, NotFoundError
from autopilot.models import (
    Account,
    ContentPiece,
    Keyword,
    QueueStatus,
    ReviewQueueItem,
    Run,
    RunStatus,
    TERMINAL_RUN_STATUSES,
)

logger = logging.getLogger("autopilot.datastore")

STORE_FILENAME = "autopilot.json"
COLLECTIONS = (
    "accounts",
    "runs",
    "content_pieces",
    "queue_items",
    "keywords",
    "gbp_posts",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(path: Path, default: Any = None) -> Any:
    """Load JSON from *path*, returning *default* when missing or corrupt."""
    if default is None:
        default = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (FileNotFoundError, json.JSONDecodeError):
        return default


def _save_json(path: Path, data: Any) -> None:
    """Atomic JSON write: write to .tmp then os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, default=str, ensure_ascii=False)
    os.replace(tmp_path, path)


class Datastore:
    """File-backed store for accounts, runs, content, queue items and keywords."""

    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / STORE_FILENAME
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot: Optional[Dict[str, Dict[str, Any]]] = None
        raw = _load_json(self.path, {})
        self._data: Dict[str, Dict[str, Any]] = {
            name: dict(raw.get(name, {})) for name in COLLECTIONS
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _flush(self) -> None:
        if self._depth:
            return
        _save_json(self.path, self._data)

    @contextmanager
    def transaction(self) -> Iterator[Datastore]:
        """Group writes into one atomic flush. Nested calls join the outer one."""
        with self._lock:
            if self._depth == 0:
                self._snapshot = copy.deepcopy(self._data)
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0 and self._snapshot is not None:
                    self._data = self._snapshot
                    self._snapshot = None
                    logger.warning("Transaction rolled back")
                raise
            self._depth -= 1
            if self._depth == 0:
                self._snapshot = None
                self._flush()

    def _put(self, collection: str, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._data[collection][key] = record
            self._flush()

    def _get(self, collection: str, key: str, label: str) -> Dict[str, Any]:
        record = self._data[collection].get(key)
        if record is None:
            raise NotFoundError(f"{label} {key} not found")
        return copy.deepcopy(record)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def save_account(self, account: Account) -> Account:
        self._put("accounts", account.id, account.to_dict())
        return account

    def get_account(self, account_id: str) -> Account:
        return Account.from_dict(self._get("accounts", account_id, "Account"))

    def update_account(self, account_id: str, **changes: Any) -> Account:
        with self._lock:
            record = self._get("accounts", account_id, "Account")
            record.update(changes)
            self._put("accounts", account_id, record)
        return Account.from_dict(record)

    def list_accounts(self, health: Optional[str] = None) -> List[Account]:
        accounts = [Account.from_dict(r) for r in self._data["accounts"].values()]
        if health is not None:
            accounts = [a for a in accounts if a.account_health == health]
        return sorted(accounts, key=lambda a: a.created_at)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(self, run: Run) -> Run:
        self._put("runs", run.id, run.to_dict())
        logger.debug("Created %s run %s for %s", run.pipeline, run.id[:8], run.account_id)
        return run

    def get_run(self, run_id: str) -> Run:
        return Run.from_dict(self._get("runs", run_id, "Run"))

    def update_run(self, run_id: str, **changes: Any) -> Run:
        """Apply *changes* to a running run. Terminal runs are immutable."""
        with self._lock:
            record = self._get("runs", run_id, "Run")
            if record["status"] in TERMINAL_RUN_STATUSES:
                raise InvalidTransitionError(
                    f"Run {run_id} is already {record['status']}"
                )
            status = changes.get("status")
            if status in TERMINAL_RUN_STATUSES and not changes.get("completed_at"):
                changes["completed_at"] = _now_iso()
            record.update(changes)
            self._put("runs", run_id, record)
        return Run.from_dict(record)

    def complete_run(self, run_id: str, result: Dict[str, Any]) -> Run:
        return self.update_run(run_id, status=RunStatus.COMPLETED.value, result=result)

    def fail_run(self, run_id: str, error: str) -> Run:
        return self.update_run(run_id, status=RunStatus.FAILED.value, error=error)

    def list_runs(self, account_id: Optional[str] = None) -> List[Run]:
        runs = [Run.from_dict(r) for r in self._data["runs"].values()]
        if account_id is not None:
            runs = [r for r in runs if r.account_id == account_id]
        return sorted(runs, key=lambda r: r.started_at)

    # ------------------------------------------------------------------
    # Content pieces
    # ------------------------------------------------------------------

    def save_content_piece(self, piece: ContentPiece) -> ContentPiece:
        self._put("content_pieces", piece.id, piece.to_dict())
        return piece

    def get_content_piece(self, piece_id: str) -> ContentPiece:
        return ContentPiece.from_dict(self._get("content_pieces", piece_id, "Content piece"))

    def update_content_piece(self, piece_id: str, **changes: Any) -> ContentPiece:
        with self._lock:
            record = self._get("content_pieces", piece_id, "Content piece")
            record.update(changes)
            record["updated_at"] = _now_iso()
            self._put("content_pieces", piece_id, record)
        return ContentPiece.from_dict(record)

    def list_content_pieces(self, account_id: Optional[str] = None) -> List[ContentPiece]:
        pieces = [ContentPiece.from_dict(r) for r in self._data["content_pieces"].values()]
        if account_id is not None:
            pieces = [p for p in pieces if p.account_id == account_id]
        return sorted(pieces, key=lambda p: p.created_at)

    # ------------------------------------------------------------------
    # Review queue
    # ------------------------------------------------------------------

    def save_queue_item(self, item: ReviewQueueItem) -> ReviewQueueItem:
        self._put("queue_items", item.id, item.to_dict())
        return item

    def get_queue_item(self, item_id: str) -> ReviewQueueItem:
        return ReviewQueueItem.from_dict(self._get("queue_items", item_id, "Queue item"))

    def update_queue_item(self, item_id: str, **changes: Any) -> ReviewQueueItem:
        """Apply *changes*; a ``status`` change must follow the queue lifecycle."""
        with self._lock:
            record = self._get("queue_items", item_id, "Queue item")
            new_status = changes.get("status")
            if new_status is not None and new_status != record["status"]:
                item = ReviewQueueItem.from_dict(record)
                if not item.can_transition(new_status):
                    raise InvalidTransitionError(
                        f"Queue item {item_id} cannot move from {record['status']} to {new_status}"
                    )
            record.update(changes)
            self._put("queue_items", item_id, record)
        return ReviewQueueItem.from_dict(record)

    def list_queue_items(
        self,
        account_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[ReviewQueueItem]:
        items = [ReviewQueueItem.from_dict(r) for r in self._data["queue_items"].values()]
        if account_id is not None:
            items = [i for i in items if i.account_id == account_id]
        if status is not None:
            items = [i for i in items if i.status == status]
        return sorted(items, key=lambda i: i.created_at)

    def latest_deployed_item(self, content_piece_id: str) -> Optional[ReviewQueueItem]:
        deployed = [
            i for i in self.list_queue_items(status=QueueStatus.DEPLOYED.value)
            if i.content_piece_id == content_piece_id
        ]
        if not deployed:
            return None
        return max(deployed, key=lambda i: i.deployed_at or "")

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    def upsert_keyword(self, keyword: Keyword) -> Keyword:
        """Insert or merge by (account, keyword). Rank history is preserved."""
        with self._lock:
            existing = self._data["keywords"].get(keyword.key)
            if existing is not None:
                merged = Keyword.from_dict(existing)
                merged.search_volume = keyword.search_volume
                merged.difficulty = keyword.difficulty
                merged.keyword_type = keyword.keyword_type
                merged.source = keyword.source or merged.source
                merged.last_checked_at = keyword.last_checked_at
                if keyword.current_position is not None:
                    merged.previous_position = merged.current_position
                    merged.current_position = keyword.current_position
                    if merged.best_position is None or keyword.current_position < merged.best_position:
                        merged.best_position = keyword.current_position
                keyword = merged
            elif keyword.current_position is not None and keyword.best_position is None:
                keyword.best_position = keyword.current_position
            self._put("keywords", keyword.key, keyword.to_dict())
        return keyword

    def list_keywords(self, account_id: str) -> List[Keyword]:
        return [
            Keyword.from_dict(r)
            for r in self._data["keywords"].values()
            if r["account_id"] == account_id
        ]

    # ------------------------------------------------------------------
    # Scheduled GBP posts
    # ------------------------------------------------------------------

    def save_gbp_post(self, post: Dict[str, Any]) -> Dict[str, Any]:
        self._put("gbp_posts", post["id"], dict(post))
        return post

    def update_gbp_post(self, post_id: str, **changes: Any) -> Dict[str, Any]:
        with self._lock:
            record = self._get("gbp_posts", post_id, "GBP post")
            record.update(changes)
            self._put("gbp_posts", post_id, record)
        return record

    def list_gbp_posts(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        posts = [copy.deepcopy(p) for p in self._data["gbp_posts"].values()]
        if status is not None:
            posts = [p for p in posts if p.get("status") == status]
        return sorted(posts, key=lambda p: p.get("scheduled_for", ""))
