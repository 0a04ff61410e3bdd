"""
Repository Layer Exceptions.

Repositories catch SQLAlchemy errors and re-raise them as one of
these, with the repository and operation attached. The report
generator treats any of them as a retryable generation failure.
"""

from typing import Optional


class RepositoryException(Exception):
    """Base exception for all repository operations."""

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None,
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"


class ConnectionError(RepositoryException):
    """Database unreachable (timeouts, pool exhaustion)."""

    def __init__(self, repository_name: str, operation: str, original_error: str) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error},
        )


class QueryError(RepositoryException):
    """A statement failed to execute."""

    def __init__(self, repository_name: str, operation: str, original_error: str) -> None:
        super().__init__(
            message=f"Query failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error},
        )

