"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Caller-facing error taxonomy of the market data layer.

Per-source failures (UpstreamUnavailable, ParseFailure) are
recovered inside the aggregation pass and only show up in logs
and source status maps. The others propagate to the HTTP
boundary, where ``code`` and ``http_status`` pick the envelope.

============================================================
EXCEPTION HIERARCHY
============================================================
MarketDataError (base)
├── ConfigurationError
├── UpstreamUnavailable
├── ParseFailure
├── AllSourcesFailed
│   └── AggregationTimeout
├── QuotaExceeded
├── GenerationFailure
└── NotFound
============================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Handled locally, the caller never sees it."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class MarketDataError(Exception):
    """
    Base exception for all market data errors.

    All exceptions carry:
    - code / http_status: for the JSON error envelope
    - severity: for logging
    - context: structured metadata, also exposed to API clients
    - classification: for retry decisions
    """

    code: str = "API_ERROR"
    http_status: int = 500
    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__

    @property
    def retryable(self) -> bool:
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_envelope(self) -> Dict[str, Any]:
        """Public error body; never includes the cause text."""
        body = {"success": False, "code": self.code, "message": self.message}
        body.update(self.context_public())
        return body

    def context_public(self) -> Dict[str, Any]:
        return {}


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(MarketDataError):
    """Invalid or missing configuration."""

    code = "CONFIGURATION_ERROR"
    default_severity = Severity.HIGH
    default_recoverable = False
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# PER-SOURCE ERRORS (recovered locally)
# ============================================================

class UpstreamUnavailable(MarketDataError):
    """Network or HTTP failure of a single upstream source."""

    code = "UPSTREAM_UNAVAILABLE"
    http_status = 502
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if source:
            context["source"] = source
        if status_code is not None:
            context["status_code"] = status_code
        self.source = source
        self.status_code = status_code
        super().__init__(message, context=context, **kwargs)


class ParseFailure(MarketDataError):
    """Upstream payload had an unexpected shape."""

    code = "PARSE_FAILURE"
    http_status = 502
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if source:
            context["source"] = source
        self.source = source
        super().__init__(message, context=context, **kwargs)


# ============================================================
# CALLER-FACING ERRORS
# ============================================================

class AllSourcesFailed(MarketDataError):
    """Every source of an aggregation failed."""

    code = "SERVICE_DEGRADED"
    http_status = 503
    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT

    def __init__(
        self,
        message: str,
        query_type: Optional[str] = None,
        source_errors: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if query_type:
            context["query_type"] = query_type
        self.query_type = query_type
        self.source_errors = source_errors or {}
        context["source_errors"] = self.source_errors
        super().__init__(message, context=context, **kwargs)

    def context_public(self) -> Dict[str, Any]:
        return {"retryable": True, "sources": sorted(self.source_errors)}


class AggregationTimeout(AllSourcesFailed):
    """The caller-level deadline elapsed before the fan-out finished."""

    def __init__(self, message: str, query_type: Optional[str] = None, timeout: float = 0.0, **kwargs):
        context = kwargs.pop("context", {})
        context["timeout_seconds"] = timeout
        self.timeout = timeout
        super().__init__(message, query_type=query_type, context=context, **kwargs)


class QuotaExceeded(MarketDataError):
    """User-level AI usage limit reached."""

    code = "RATE_LIMIT"
    http_status = 429
    default_severity = Severity.LOW
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        quota_type: str,
        usage: Optional[Dict[str, int]] = None,
        limits: Optional[Dict[str, int]] = None,
        remaining: Optional[Dict[str, int]] = None,
        reset_at: Optional[datetime] = None,
        **kwargs,
    ):
        self.quota_type = quota_type
        self.usage = usage or {}
        self.limits = limits or {}
        self.remaining = remaining or {}
        self.reset_at = reset_at
        context = kwargs.pop("context", {})
        context["quota_type"] = quota_type
        super().__init__(message, context=context, **kwargs)

    def context_public(self) -> Dict[str, Any]:
        return {
            "usage": self.usage,
            "limits": self.limits,
            "remaining": self.remaining,
            "resetAt": self.reset_at.isoformat() if self.reset_at else None,
        }


class GenerationFailure(MarketDataError):
    """Language model provider error while generating a report."""

    code = "GENERATION_FAILED"
    default_severity = Severity.HIGH

    def __init__(self, message: str, retryable: bool = True, report_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if report_key:
            context["report_key"] = report_key
        classification = (
            ErrorClassification.TRANSIENT if retryable else ErrorClassification.NON_RECOVERABLE
        )
        super().__init__(message, context=context, classification=classification, **kwargs)
        self.http_status = 503 if retryable else 500

    def context_public(self) -> Dict[str, Any]:
        return {"retryable": self.retryable}


class NotFound(MarketDataError):
    """Requested commodity, city or price does not exist."""

    code = "NOT_FOUND"
    http_status = 404
    default_severity = Severity.LOW


__all__ = [
    "Severity",
    "ErrorClassification",
    "MarketDataError",
    "ConfigurationError",
    "UpstreamUnavailable",
    "ParseFailure",
    "AllSourcesFailed",
    "AggregationTimeout",
    "QuotaExceeded",
    "GenerationFailure",
    "NotFound",
]
