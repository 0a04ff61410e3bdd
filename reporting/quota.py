"""
Reporting - Usage Quota.

============================================================
RESPONSIBILITY
============================================================
Per-user daily limits on AI reports.

- check() before serving a report (cached or not)
- commit() after a successful, non-cached generation, for the
  caller that triggered it only
- reserve() / release() hold a report while its generation is
  in flight; check() counts held reports as used
- usage periods are UTC days; limits reset at 00:00 UTC
- -1 means unlimited
============================================================
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import QuotaExceeded
from reporting.models import ReportKind, UsageCounters, UserPlan
from storage.repositories.reports import UsageRepository


logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class PlanLimits:
    reports_per_day: int
    tokens_per_day: int

    def to_dict(self) -> Dict[str, int]:
        return {"reports": self.reports_per_day, "tokens": self.tokens_per_day}


PLAN_LIMITS: Dict[UserPlan, PlanLimits] = {
    UserPlan.FREE: PlanLimits(reports_per_day=3, tokens_per_day=10_000),
    UserPlan.PRO: PlanLimits(reports_per_day=20, tokens_per_day=100_000),
    UserPlan.BUSINESS: PlanLimits(reports_per_day=UNLIMITED, tokens_per_day=UNLIMITED),
}


def _within(current: int, limit: int, extra: int = 0) -> bool:
    return limit == UNLIMITED or current + extra <= limit


def _remaining(current: int, limit: int) -> int:
    return UNLIMITED if limit == UNLIMITED else max(0, limit - current)


@dataclass(frozen=True)
class QuotaStatus:
    user_id: str
    plan: UserPlan
    counters: UsageCounters
    limits: PlanLimits
    reset_at: datetime

    @property
    def usage(self) -> Dict[str, int]:
        return {"reports": self.counters.reports, "tokens": self.counters.tokens}

    @property
    def remaining(self) -> Dict[str, int]:
        return {
            "reports": _remaining(self.counters.reports, self.limits.reports_per_day),
            "tokens": _remaining(self.counters.tokens, self.limits.tokens_per_day),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.value,
            "usage": self.usage,
            "limits": self.limits.to_dict(),
            "remaining": self.remaining,
            "resetAt": self.reset_at.isoformat(),
        }


class UsageQuota:
    """Quota gate backed by a UsageRepository."""

    def __init__(
        self,
        repository: UsageRepository,
        clock: Optional[ClockProtocol] = None,
        limits: Optional[Dict[UserPlan, PlanLimits]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or SystemClock()
        self._limits = dict(limits or PLAN_LIMITS)
        self._pending: Dict[str, int] = {}

    def limits_for(self, plan: UserPlan) -> PlanLimits:
        return self._limits.get(plan, self._limits[UserPlan.FREE])

    def status(self, user_id: str, plan: UserPlan) -> QuotaStatus:
        return QuotaStatus(
            user_id=user_id,
            plan=plan,
            counters=self._repository.get(user_id, self._clock.today()),
            limits=self.limits_for(plan),
            reset_at=self._clock.next_day_start(),
        )

    def check(
        self,
        user_id: str,
        plan: UserPlan,
        kind: ReportKind,
        tokens_to_use: int = 0,
    ) -> QuotaStatus:
        """
        Verify the user may receive one more report today.

        Raises:
            QuotaExceeded: report count or token budget exhausted
        """
        status = self.status(user_id, plan)
        counters, limits = status.counters, status.limits

        quota_type = None
        if not _within(counters.reports + self.pending(user_id), limits.reports_per_day, 1):
            quota_type = "reports"
            message = f"Limite de {limits.reports_per_day} relatórios/dia atingido"
        elif limits.tokens_per_day != UNLIMITED and counters.tokens + tokens_to_use > limits.tokens_per_day:
            quota_type = "tokens"
            message = "Limite de tokens diário atingido"

        if quota_type is not None:
            logger.info(f"Quota exceeded for {user_id} ({plan.value}, {kind.value}): {quota_type}")
            raise QuotaExceeded(
                message,
                quota_type=quota_type,
                usage=status.usage,
                limits=limits.to_dict(),
                remaining=status.remaining,
                reset_at=status.reset_at,
            )
        return status

    def commit(self, user_id: str, kind: ReportKind, tokens: int) -> UsageCounters:
        """Charge one report and ``tokens`` to today's counters."""
        counters = self._repository.increment(user_id, self._clock.today(), reports=1, tokens=tokens)
        logger.debug(f"Usage committed for {user_id}: {kind.value}, {tokens} tokens")
        return counters

    def pending(self, user_id: str) -> int:
        return self._pending.get(user_id, 0)

    def reserve(self, user_id: str) -> None:
        """Hold one report for ``user_id`` until release()."""
        self._pending[user_id] = self.pending(user_id) + 1

    def release(self, user_id: str) -> None:
        remaining = self.pending(user_id) - 1
        if remaining > 0:
            self._pending[user_id] = remaining
        else:
            self._pending.pop(user_id, None)
