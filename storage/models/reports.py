"""
AI Report ORM Models.

============================================================
TABLES
============================================================
- ai_reports: generated market reports, one row per generation
- ai_usage: per-user daily usage counters (UTC day)
============================================================
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


class AIReportRecord(Base, TimestampMixin):
    """
    Generated report.

    ``report_key`` is the cache key of the report (e.g. ``daily_report``
    or ``commodity_report|slug=soja``); the latest row with
    ``valid_until`` in the future is the current report for that key.
    """

    __tablename__ = "ai_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    report_key: Mapped[str] = mapped_column(String(120), nullable=False)
    commodity_slug: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    model: Mapped[str] = mapped_column(String(80), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    generated_at: Mapped[datetime] = mapped_column(nullable=False)
    valid_until: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Save order within ``report_key``; breaks ``generated_at`` ties."""

    __table_args__ = (
        Index("ix_ai_reports_key_generated", "report_key", "generated_at"),
        Index("ix_ai_reports_valid_until", "valid_until"),
    )

    def __repr__(self) -> str:
        return f"<AIReportRecord {self.report_key} {self.generated_at}>"


class AIUsageRecord(Base, TimestampMixin):
    """Reports served and tokens consumed by one user on one UTC day."""

    __tablename__ = "ai_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    reports: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "usage_date", name="uq_ai_usage_user_date"),
    )
