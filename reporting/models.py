"""
Reporting - Models.

============================================================
PURPOSE
============================================================
Report records and the per-key generation state.

State machine per report key:

    ABSENT ──> GENERATING ──> READY
                  ^             │ TTL lapses
                  └── STALE <───┘

A failed generation reverts the key to the state it was in
before GENERATING.
============================================================
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ReportKind(str, Enum):
    DAILY = "daily"
    COMMODITY = "commodity"


class ReportState(str, Enum):
    ABSENT = "absent"
    GENERATING = "generating"
    READY = "ready"
    STALE = "stale"


class UserPlan(str, Enum):
    FREE = "free"
    PRO = "pro"
    BUSINESS = "business"

    @classmethod
    def parse(cls, value: Optional[str]) -> "UserPlan":
        """Plan from a header value; unknown or missing means FREE."""
        if not value:
            return cls.FREE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.FREE


@dataclass(frozen=True)
class UserContext:
    """Caller identity as seen by the quota gate."""
    user_id: str
    plan: UserPlan = UserPlan.FREE


@dataclass(frozen=True)
class AggregatedReport:
    """Generated market report."""
    id: str
    kind: ReportKind
    key: str
    title: str
    content: str
    summary: str
    generated_at: datetime
    valid_until: datetime
    tokens_used: int
    estimated_cost: float
    model: str
    commodity_slug: Optional[str] = None
    cached: bool = False

    def is_valid(self, now: datetime) -> bool:
        return now < self.valid_until

    def as_cached(self) -> "AggregatedReport":
        return replace(self, cached=True)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "generated_at": self.generated_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "tokens_used": self.tokens_used,
            "estimated_cost": self.estimated_cost,
            "model": self.model,
            "cached": self.cached,
        }
        if self.commodity_slug:
            body["commodity_slug"] = self.commodity_slug
        return body


@dataclass
class UsageCounters:
    """Usage of one user on one UTC day."""
    user_id: str
    day: date
    reports: int = 0
    tokens: int = 0


@dataclass
class ReportSlot:
    """In-process state of one report key."""
    key: str
    state: ReportState = ReportState.ABSENT
    report: Optional[AggregatedReport] = None
    hydrated: bool = False
    generations: int = 0
    failures: int = 0
    last_error: Optional[str] = None


# =============================================================
# SCHEDULED BATCHES
# =============================================================

@dataclass
class BatchItem:
    """Outcome of one commodity in a scheduled batch."""
    slug: str
    name: str
    success: bool
    report_id: Optional[str] = None
    cached: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "success": self.success,
            "report_id": self.report_id,
            "cached": self.cached,
            "error": self.error,
        }


@dataclass
class BatchSummary:
    items: List[BatchItem]
    duration_seconds: float = 0.0

    @property
    def generated(self) -> int:
        return sum(1 for item in self.items if item.success and not item.cached)

    @property
    def cached(self) -> int:
        return sum(1 for item in self.items if item.success and item.cached)

    @property
    def errors(self) -> int:
        return sum(1 for item in self.items if not item.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats": {
                "total": len(self.items),
                "generated": self.generated,
                "cached": self.cached,
                "errors": self.errors,
            },
            "results": [item.to_dict() for item in self.items],
            "duration_seconds": round(self.duration_seconds, 1),
        }


@dataclass(frozen=True)
class CommodityReportEntry:
    """Whether a commodity currently has a valid report."""
    slug: str
    name: str
    report_id: Optional[str] = None
    generated_at: Optional[datetime] = None

    @property
    def has_report(self) -> bool:
        return self.report_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "has_report": self.has_report,
            "report_id": self.report_id,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }
