"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
Defines repository-specific exceptions for proper error handling
and propagation. All database errors must be caught and wrapped
in these exceptions.

============================================================
USAGE
============================================================
Repositories catch SQLAlchemy/database exceptions and re-raise
as repository exceptions with context.

The lifecycle layer catches repository exceptions and maps them
onto its own error taxonomy.

============================================================
"""

from typing import Any, Optional


class RepositoryException(Exception):
    """
    Base exception for all repository operations.

    All repository-specific exceptions inherit from this class.
    Business layers can catch this for generic error handling.
    """

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"


class DuplicateRecordError(RepositoryException):
    """
    Raised when attempting to create a duplicate record.

    Use when unique constraint violations occur during insert.
    """

    def __init__(
        self,
        repository_name: str,
        constraint_field: str,
        value: Any
    ) -> None:
        super().__init__(
            message=f"Duplicate record: {constraint_field}={value} already exists",
            repository_name=repository_name,
            operation="create",
            details={"field": constraint_field, "value": str(value)}
        )
        self.constraint_field = constraint_field
        self.value = value


class IntegrityError(RepositoryException):
    """
    Raised when database integrity constraints are violated.

    Includes not-null violations, check constraints, etc.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        constraint_name: str,
        message: str
    ) -> None:
        super().__init__(
            message=f"Integrity constraint violated ({constraint_name}): {message}",
            repository_name=repository_name,
            operation=operation,
            details={"constraint": constraint_name}
        )
        self.constraint_name = constraint_name


class ConnectionError(RepositoryException):
    """
    Raised when database connection fails.

    Use for connection timeouts, pool exhaustion, etc.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class QueryError(RepositoryException):
    """
    Raised when a query execution fails.

    Use for syntax errors, invalid parameters, etc.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        query_description: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Query failed ({query_description}): {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={
                "query_description": query_description,
                "original_error": original_error
            }
        )


class TransactionError(RepositoryException):
    """
    Raised when transaction management fails.

    Use for commit failures, rollback issues, etc.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        phase: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Transaction {phase} failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"phase": phase, "original_error": original_error}
        )
        self.phase = phase


class RepositoryClosedError(RepositoryException):
    """
    Raised when an operation is attempted on a closed repository.

    No store call is made once a repository has been closed.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str
    ) -> None:
        super().__init__(
            message="Repository is closed",
            repository_name=repository_name,
            operation=operation,
        )


class BulkWriteError(RepositoryException):
    """
    Raised when an unordered bulk insert had at least one failure.

    Documents that did insert stay persisted. Only counts are
    reported; which documents failed is deliberately not exposed.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        failed_count: int,
        attempted_count: int,
        first_error: str
    ) -> None:
        super().__init__(
            message=(
                f"{failed_count} of {attempted_count} documents failed to insert: "
                f"{first_error}"
            ),
            repository_name=repository_name,
            operation=operation,
            details={
                "failed_count": failed_count,
                "attempted_count": attempted_count,
            }
        )
        self.failed_count = failed_count
        self.attempted_count = attempted_count
