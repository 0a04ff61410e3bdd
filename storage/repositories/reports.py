"""
Report and Usage Repositories.

============================================================
PURPOSE
============================================================
Persistence seams of the report generator.

- ReportRepository: save generated reports, find the latest
  still-valid report per key, purge expired rows
- UsageRepository: per-user daily counters

Two implementations each: in-memory (tests, single process
without a database) and SQLAlchemy.
============================================================
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from reporting.models import AggregatedReport, ReportKind, UsageCounters
from storage.models.reports import AIReportRecord, AIUsageRecord
from storage.repositories.exceptions import ConnectionError, QueryError

if TYPE_CHECKING:
    from storage.database import Database


logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================
# INTERFACES
# =============================================================

class ReportRepository(ABC):

    @abstractmethod
    def save(self, report: AggregatedReport) -> None:
        pass

    @abstractmethod
    def latest_valid(self, key: str, now: datetime) -> Optional[AggregatedReport]:
        """Most recent report for ``key`` with ``valid_until > now``."""
        pass

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        pass


class UsageRepository(ABC):

    @abstractmethod
    def get(self, user_id: str, day: date) -> UsageCounters:
        """Counters for the day; zeroes when nothing was recorded."""
        pass

    @abstractmethod
    def increment(self, user_id: str, day: date, reports: int = 0, tokens: int = 0) -> UsageCounters:
        pass


# =============================================================
# IN-MEMORY
# =============================================================

class InMemoryReportRepository(ReportRepository):

    def __init__(self) -> None:
        self._reports: Dict[str, List[AggregatedReport]] = {}

    def save(self, report: AggregatedReport) -> None:
        self._reports.setdefault(report.key, []).append(replace(report, cached=False))

    def latest_valid(self, key: str, now: datetime) -> Optional[AggregatedReport]:
        valid = [r for r in self._reports.get(key, []) if r.is_valid(now)]
        if not valid:
            return None
        # ties go to the most recently saved
        return max(reversed(valid), key=lambda r: r.generated_at)

    def delete_expired(self, now: datetime) -> int:
        removed = 0
        for key, reports in self._reports.items():
            kept = [r for r in reports if r.is_valid(now)]
            removed += len(reports) - len(kept)
            self._reports[key] = kept
        return removed

    def all(self) -> List[AggregatedReport]:
        return [r for reports in self._reports.values() for r in reports]


class InMemoryUsageRepository(UsageRepository):

    def __init__(self) -> None:
        self._counters: Dict[Tuple[str, date], UsageCounters] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, day: date) -> UsageCounters:
        counters = self._counters.get((user_id, day))
        if counters is None:
            return UsageCounters(user_id=user_id, day=day)
        return UsageCounters(user_id=user_id, day=day, reports=counters.reports, tokens=counters.tokens)

    def increment(self, user_id: str, day: date, reports: int = 0, tokens: int = 0) -> UsageCounters:
        with self._lock:
            counters = self._counters.setdefault((user_id, day), UsageCounters(user_id=user_id, day=day))
            counters.reports += reports
            counters.tokens += tokens
            return UsageCounters(user_id=user_id, day=day, reports=counters.reports, tokens=counters.tokens)


# =============================================================
# SQLALCHEMY
# =============================================================

class _SQLRepository:

    def __init__(self, database: "Database", repository_name: str) -> None:
        self._db = database
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    def _handle_db_error(self, error: SQLAlchemyError, operation: str) -> None:
        self._logger.error(f"Database error in {operation}: {error}")
        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error),
            ) from error
        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error),
        ) from error


class SQLReportRepository(_SQLRepository, ReportRepository):

    def __init__(self, database: "Database") -> None:
        super().__init__(database, "ai_reports")

    def save(self, report: AggregatedReport) -> None:
        record = AIReportRecord(
            id=report.id,
            kind=report.kind.value,
            report_key=report.key,
            commodity_slug=report.commodity_slug,
            title=report.title,
            content=report.content,
            summary=report.summary,
            model=report.model,
            tokens_used=report.tokens_used,
            estimated_cost=report.estimated_cost,
            generated_at=report.generated_at,
            valid_until=report.valid_until,
        )
        last_sequence = (
            select(func.coalesce(func.max(AIReportRecord.sequence), 0))
            .where(AIReportRecord.report_key == report.key)
        )
        try:
            with self._db.transaction_scope() as session:
                record.sequence = session.execute(last_sequence).scalar_one() + 1
                session.add(record)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "save")
        self._logger.debug(f"Saved report {report.key} ({report.id})")

    def latest_valid(self, key: str, now: datetime) -> Optional[AggregatedReport]:
        stmt = (
            select(AIReportRecord)
            .where(AIReportRecord.report_key == key, AIReportRecord.valid_until > now)
            .order_by(AIReportRecord.generated_at.desc(), AIReportRecord.sequence.desc())
            .limit(1)
        )
        try:
            with self._db.transaction_scope() as session:
                record = session.execute(stmt).scalar_one_or_none()
                return self._to_report(record) if record is not None else None
        except SQLAlchemyError as e:
            self._handle_db_error(e, "latest_valid")

    def delete_expired(self, now: datetime) -> int:
        stmt = delete(AIReportRecord).where(AIReportRecord.valid_until <= now)
        try:
            with self._db.transaction_scope() as session:
                result = session.execute(stmt)
                count = result.rowcount or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "delete_expired")
        if count:
            self._logger.info(f"Deleted {count} expired reports")
        return count

    @staticmethod
    def _to_report(record: AIReportRecord) -> AggregatedReport:
        return AggregatedReport(
            id=record.id,
            kind=ReportKind(record.kind),
            key=record.report_key,
            title=record.title,
            content=record.content,
            summary=record.summary,
            generated_at=_aware(record.generated_at),
            valid_until=_aware(record.valid_until),
            tokens_used=record.tokens_used,
            estimated_cost=record.estimated_cost,
            model=record.model,
            commodity_slug=record.commodity_slug,
        )


class SQLUsageRepository(_SQLRepository, UsageRepository):

    def __init__(self, database: "Database") -> None:
        super().__init__(database, "ai_usage")

    def _find(self, session, user_id: str, day: date) -> Optional[AIUsageRecord]:
        stmt = select(AIUsageRecord).where(
            AIUsageRecord.user_id == user_id,
            AIUsageRecord.usage_date == day,
        )
        return session.execute(stmt).scalar_one_or_none()

    def get(self, user_id: str, day: date) -> UsageCounters:
        try:
            with self._db.transaction_scope() as session:
                record = self._find(session, user_id, day)
                if record is None:
                    return UsageCounters(user_id=user_id, day=day)
                return UsageCounters(user_id=user_id, day=day, reports=record.reports, tokens=record.tokens_used)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get")

    def increment(self, user_id: str, day: date, reports: int = 0, tokens: int = 0) -> UsageCounters:
        try:
            with self._db.transaction_scope() as session:
                record = self._find(session, user_id, day)
                if record is None:
                    record = AIUsageRecord(user_id=user_id, usage_date=day, reports=0, tokens_used=0)
                    session.add(record)
                record.reports += reports
                record.tokens_used += tokens
                session.flush()
                return UsageCounters(user_id=user_id, day=day, reports=record.reports, tokens=record.tokens_used)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "increment")
