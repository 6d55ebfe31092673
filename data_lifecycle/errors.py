"""
Data Lifecycle - Error Taxonomy.

============================================================
PURPOSE
============================================================
Errors raised by the lifecycle orchestrator.

ERROR CATEGORIES:
1. Validation - missing/empty identifying field or selectors
2. Conflict - duplicate live data set
3. Not Found - single-result fetch that requires existence
4. Precondition - repository closed/unavailable
5. Store - wrapped underlying store failure

PROPAGATION:
- Precondition and Validation are raised before any store call
- Store errors carry an operation-specific message and chain the
  repository exception as __cause__
- Nothing is retried at this layer

============================================================
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Required identifying field missing or empty."""

    CONFLICT = "CONFLICT"
    """Data set already exists."""

    NOT_FOUND = "NOT_FOUND"
    """Required single result does not exist."""

    PRECONDITION = "PRECONDITION"
    """Repository unavailable or closed."""

    STORE = "STORE"
    """Underlying store failure."""


class LifecycleError(Exception):
    """
    Base exception for lifecycle operations.

    Attributes:
        message: Human-readable message
        category: Error category
        operation: Lifecycle operation that failed
        details: Additional context
    """

    category: ErrorCategory = ErrorCategory.STORE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.message = message
        self.operation = operation
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "category": self.category.value,
            "operation": self.operation,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LifecycleError):
    """Required identifying field is missing or empty."""

    category = ErrorCategory.VALIDATION


class ConflictError(LifecycleError):
    """A live data set with the same (userId, uploadId) exists."""

    category = ErrorCategory.CONFLICT


class NotFoundError(LifecycleError):
    """A fetch documented to require existence found nothing."""

    category = ErrorCategory.NOT_FOUND


class PreconditionError(LifecycleError):
    """A repository is closed or otherwise unavailable."""

    category = ErrorCategory.PRECONDITION


class StoreError(LifecycleError):
    """
    Wrapped store failure.

    The repository exception is available as __cause__.
    """

    category = ErrorCategory.STORE


__all__ = [
    "ErrorCategory",
    "LifecycleError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "PreconditionError",
    "StoreError",
]
