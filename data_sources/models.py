"""
Data Source Models - Per-source result and health structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class SourceStatus(Enum):
    """Health status of a data source."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class SourceKind(Enum):
    """Domain a source feeds."""
    REFERENCE_RATE = "reference_rate"
    INTEREST_RATE = "interest_rate"
    INTERNATIONAL = "international"
    SPOT_QUOTE = "spot_quote"
    NEWS = "news"
    WEATHER = "weather"
    GEOCODING = "geocoding"
    PRECIPITATION = "precipitation"


@dataclass
class SourceResult(Generic[T]):
    """
    Outcome of one ``fetch()`` call.

    Exactly one of ``records`` (possibly empty) or ``error`` is meaningful:
    a successful fetch with no data has ``ok=True`` and ``records=[]``.
    """
    source: str
    records: list[T] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    latency_ms: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, source: str, records: list[T], latency_ms: Optional[float] = None) -> "SourceResult[T]":
        return cls(source=source, records=list(records), latency_ms=latency_ms)

    @classmethod
    def failure(cls, source: str, error: Exception | str) -> "SourceResult[T]":
        if isinstance(error, Exception):
            return cls(source=source, error=str(error) or type(error).__name__, error_type=type(error).__name__)
        return cls(source=source, error=error, error_type="error")

    def status_dict(self) -> dict[str, Any]:
        """Short status used in aggregate envelopes."""
        if self.ok:
            return {"ok": True, "count": len(self.records)}
        return {"ok": False, "error": self.error_type}


@dataclass
class SourceHealth:
    """Health status of a data source."""
    status: SourceStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    uptime_percentage: float = 100.0

    def is_usable(self) -> bool:
        """Check if source can still be used (healthy or degraded)."""
        return self.status in (SourceStatus.HEALTHY, SourceStatus.DEGRADED, SourceStatus.UNKNOWN)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "uptime_percentage": round(self.uptime_percentage, 1),
        }


@dataclass
class SourceMetadata:
    """Metadata about an upstream provider."""
    name: str
    display_name: str
    kind: SourceKind
    base_url: str = ""
    requires_user_agent: bool = False
    documentation_url: str = ""
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "kind": self.kind.value,
            "base_url": self.base_url,
            "documentation_url": self.documentation_url,
            "tags": self.tags,
        }


@dataclass
class SourceIncident:
    """Record of a data source incident."""
    source_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    request_params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_name": self.source_name,
            "incident_type": self.incident_type,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
            "request_params": self.request_params,
        }
