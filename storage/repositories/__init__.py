"""
Repository Layer Package.

All report persistence goes through these repositories; database
errors surface as repository exceptions.
"""

from storage.repositories.exceptions import (
    ConnectionError,
    QueryError,
    RepositoryException,
)
from storage.repositories.reports import (
    InMemoryReportRepository,
    InMemoryUsageRepository,
    ReportRepository,
    SQLReportRepository,
    SQLUsageRepository,
    UsageRepository,
)


__all__ = [
    "ConnectionError",
    "QueryError",
    "RepositoryException",
    "InMemoryReportRepository",
    "InMemoryUsageRepository",
    "ReportRepository",
    "SQLReportRepository",
    "SQLUsageRepository",
    "UsageRepository",
]
