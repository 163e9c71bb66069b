"""
Domain records for Practice Autopilot.

Persistent records (``Run``, ``ContentPiece``, ``ReviewQueueItem``,
``Keyword``, ``Account``) round-trip through ``to_dict``/``from_dict`` for
the datastore. Transfer records (``Topic``, ``KeywordData``...) carry data
between clients and pipelines and are never stored on their own.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Type, TypeVar

T = TypeVar("T")


def _now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _known_fields(cls: Type[T], data: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    return {k: v for k, v in data.items() if k in known}


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PipelineName(str, Enum):
    CONDUCTOR = "conductor"
    SCHOLAR = "scholar"
    GHOSTWRITER = "ghostwriter"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATUSES: FrozenSet[str] = frozenset(
    {RunStatus.COMPLETED.value, RunStatus.FAILED.value}
)


class RunTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    CONDUCTOR = "conductor"


class ContentType(str, Enum):
    BLOG_POST = "blog_post"
    SERVICE_PAGE = "service_page"
    FAQ = "faq"
    GBP_POST = "gbp_post"


class ContentStatus(str, Enum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    PUBLISHED = "published"
    REJECTED = "rejected"


class ComplianceStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    BLOCK = "block"


class Severity(str, Enum):
    """Queue item severity. Independent of compliance pass/warn/block."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class QueueStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEPLOYED = "deployed"
    ROLLED_BACK = "rolled_back"


QUEUE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    QueueStatus.PENDING.value: frozenset(
        {QueueStatus.APPROVED.value, QueueStatus.REJECTED.value}
    ),
    QueueStatus.APPROVED.value: frozenset({QueueStatus.DEPLOYED.value}),
    QueueStatus.DEPLOYED.value: frozenset({QueueStatus.ROLLED_BACK.value}),
}


class ActionType(str, Enum):
    CONTENT_REVIEW = "content_review"
    CONTENT_RECOMMENDATION = "content_recommendation"


# Queue actions whose approval publishes a content piece.
CONTENT_ACTIONS: FrozenSet[str] = frozenset({ActionType.CONTENT_REVIEW.value})


class KeywordType(str, Enum):
    TARGET = "target"
    GAP = "gap"
    BRANDED = "branded"
    TRACKED = "tracked"


class AccountHealth(str, Enum):
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class AgentName(str, Enum):
    CONDUCTOR = "conductor"
    SCHOLAR = "scholar"
    GHOSTWRITER = "ghostwriter"


# ---------------------------------------------------------------------------
# Persistent records
# ---------------------------------------------------------------------------


@dataclass
class Run:
    """One pipeline or conductor invocation."""
    account_id: str
    pipeline: str
    trigger: str = RunTrigger.MANUAL.value
    id: str = field(default_factory=_new_id)
    status: str = RunStatus.RUNNING.value
    config: Dict[str, Any] = field(default_factory=dict)
    result: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Run:
        return cls(**_known_fields(cls, data))


@dataclass
class ComplianceDetail:
    rule: str
    severity: str
    phrase: str
    reason: str
    suggestion: Optional[str] = None
    disclaimer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "rule": self.rule,
            "severity": self.severity,
            "phrase": self.phrase,
            "reason": self.reason,
        }
        if self.suggestion:
            out["suggestion"] = self.suggestion
        if self.disclaimer:
            out["disclaimer"] = self.disclaimer
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComplianceDetail:
        return cls(**_known_fields(cls, data))


@dataclass
class ComplianceResult:
    status: str
    details: List[ComplianceDetail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "details": [d.to_dict() for d in self.details]}


@dataclass
class ContentPiece:
    """A drafted or published article with its SEO and compliance metadata."""
    account_id: str
    title: str
    id: str = field(default_factory=_new_id)
    body_html: str = ""
    body_markdown: str = ""
    content_type: str = ContentType.BLOG_POST.value
    status: str = ContentStatus.DRAFT.value
    target_keyword: str = ""
    related_keywords: List[str] = field(default_factory=list)
    seo_score: int = 0
    word_count: int = 0
    compliance_status: str = ComplianceStatus.PASS.value
    compliance_details: List[Dict[str, Any]] = field(default_factory=list)
    meta_title: str = ""
    meta_description: str = ""
    published_url: Optional[str] = None
    published_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ContentPiece:
        return cls(**_known_fields(cls, data))


@dataclass
class ReviewQueueItem:
    """A unit of proposed automated work awaiting human approval."""
    account_id: str
    agent: str
    action_type: str
    description: str = ""
    id: str = field(default_factory=_new_id)
    proposed_data: Dict[str, Any] = field(default_factory=dict)
    rollback_data: Dict[str, Any] = field(default_factory=dict)
    severity: str = Severity.INFO.value
    status: str = QueueStatus.PENDING.value
    autonomy_tier: int = 1
    content_piece_id: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    deployed_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)

    def can_transition(self, new_status: str) -> bool:
        return new_status in QUEUE_TRANSITIONS.get(self.status, frozenset())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReviewQueueItem:
        return cls(**_known_fields(cls, data))


@dataclass
class Keyword:
    """A tracked search term for one account, unique by (account_id, keyword)."""
    account_id: str
    keyword: str
    current_position: Optional[int] = None
    previous_position: Optional[int] = None
    best_position: Optional[int] = None
    search_volume: int = 0
    difficulty: int = 0
    keyword_type: str = KeywordType.TARGET.value
    source: str = ""
    last_checked_at: str = field(default_factory=_now_iso)

    @property
    def key(self) -> str:
        return f"{self.account_id}::{self.keyword.lower()}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Keyword:
        return cls(**_known_fields(cls, data))


@dataclass
class Account:
    """A managed client account as consumed by the agents."""
    id: str
    name: str
    domain: str
    vertical: str = "dental"
    practice_profile: Dict[str, Any] = field(default_factory=dict)
    competitors: List[Dict[str, Any]] = field(default_factory=list)
    account_health: str = AccountHealth.ACTIVE.value
    google_tokens: Optional[Dict[str, str]] = None
    cms_type: str = "wordpress"
    cms_credentials: Dict[str, str] = field(default_factory=dict)
    gbp_location: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)

    @property
    def site_url(self) -> str:
        url = self.cms_credentials.get("site_url") or self.domain
        if not url.startswith("http"):
            url = f"https://{url}"
        return url.rstrip("/")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Account:
        return cls(**_known_fields(cls, data))


# ---------------------------------------------------------------------------
# Transfer records
# ---------------------------------------------------------------------------


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str
    expiry: int  # epoch milliseconds
    scope: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokenSet:
        return cls(**_known_fields(cls, data))


@dataclass
class KeywordData:
    keyword: str
    search_volume: int = 0
    difficulty: int = 0
    cpc: float = 0.0
    competition: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PositionData:
    keyword: str
    position: Optional[int] = None
    previous_position: Optional[int] = None
    url: str = ""
    search_volume: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchQuery:
    query: str
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    position: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PrioritizedKeyword:
    keyword: str
    search_volume: int = 0
    difficulty: int = 0
    priority: int = 0
    reasoning: str = ""
    keyword_type: str = KeywordType.TARGET.value
    source: str = "research"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PrioritizedKeyword:
        return cls(**_known_fields(cls, data))


@dataclass
class Topic:
    """Handoff unit between Scholar and Ghostwriter."""
    keyword: str
    suggested_title: str = ""
    angle: str = ""
    estimated_volume: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Topic:
        return cls(**_known_fields(cls, data))
