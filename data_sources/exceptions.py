"""
Data Source Exceptions - Errors raised inside upstream clients.

These never leave ``BaseUpstreamSource.fetch()``: they are caught and
turned into a failed ``SourceResult``. They extend the caller-facing
taxonomy so a source error can be classified the same way everywhere.
"""

from typing import Any, Optional

from core.exceptions import ParseFailure, UpstreamUnavailable


class FetchError(UpstreamUnavailable):
    """Network or HTTP error while talking to a provider."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source=source_name, status_code=status_code, cause=original_error)
        self.source_name = source_name
        self.response_body = response_body
        self.request_url = request_url
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data

    def is_client_error(self) -> bool:
        """Check if error is client-side."""
        return self.status_code is not None and 400 <= self.status_code < 500

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class RateLimitError(FetchError):
    """Provider answered 429."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        request_url: Optional[str] = None,
    ) -> None:
        super().__init__(message, source_name, status_code=429, request_url=request_url)
        self.retry_after_seconds = retry_after_seconds


class NormalizationError(ParseFailure):
    """Payload could not be mapped to a canonical record."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, source=source_name, cause=original_error)
        self.source_name = source_name
        self.raw_data = raw_data
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "raw_data": str(self.raw_data)[:500] if self.raw_data else None,
            "field_name": self.field_name,
        })
        return data
