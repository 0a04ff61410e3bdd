"""
ORM models.
"""

from storage.models.base import Base, TimestampMixin
from storage.models.reports import AIReportRecord, AIUsageRecord


__all__ = [
    "Base",
    "TimestampMixin",
    "AIReportRecord",
    "AIUsageRecord",
]
