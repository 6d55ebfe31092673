"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all repositories including:
- Session management patterns
- Closed-repository precondition
- Error handling wrappers
- Common bulk statement execution
- Logging setup

============================================================
USAGE
============================================================
All domain repositories inherit from BaseRepository.
Session is injected via constructor.

Every mutating call commits on success and rolls back on
failure, so each store request is atomic on its own.

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryClosedError,
    TransactionError,
)


# Type variable for ORM model
T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Provides common CRUD and bulk patterns
    - Wraps database errors in repository exceptions
    - Refuses all work once closed
    - Manages logging for all operations

    ============================================================
    USAGE
    ============================================================
    class MyRepository(BaseRepository[MyModel]):
        def __init__(self, session: Session):
            super().__init__(session, MyModel, "MyRepository")

    ============================================================
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy session (injected)
            model_class: The ORM model class this repository manages
            repository_name: Name for logging and error messages
        """
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._closed = False
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        """Get the current session."""
        return self._session

    @property
    def model_class(self) -> Type[T]:
        """Get the managed model class."""
        return self._model_class

    @property
    def repository_name(self) -> str:
        """Get the repository name."""
        return self._repository_name

    @property
    def is_closed(self) -> bool:
        """Whether the repository refuses further work."""
        return self._closed

    def close(self) -> None:
        """Mark the repository unavailable. The session is left to its owner."""
        self._closed = True
        self._logger.debug(f"{self._repository_name} closed")

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _ensure_open(self, operation: str) -> None:
        """
        Raise if the repository has been closed.

        Raises:
            RepositoryClosedError: If close() has been called
        """
        if self._closed:
            raise RepositoryClosedError(
                repository_name=self._repository_name,
                operation=operation,
            )

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Handle database errors by wrapping in repository exceptions.

        The session is rolled back first so it stays usable.

        Args:
            error: The original exception
            operation: Name of the operation that failed
            context: Additional context for logging

        Raises:
            RepositoryException: Always raises appropriate exception
        """
        context = context or {}
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context},
            exc_info=True
        )
        try:
            self._session.rollback()
        except SQLAlchemyError as rollback_error:
            self._logger.error(f"Rollback after {operation} failed: {rollback_error}")

        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            # Check for duplicate key
            error_str = str(error).lower()
            if "duplicate" in error_str or "unique" in error_str:
                raise DuplicateRecordError(
                    repository_name=self._repository_name,
                    constraint_field=context.get("constraint_field", "unknown"),
                    value=context.get("value", "unknown")
                ) from error

            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                constraint_name="unknown",
                message=str(error)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            query_description=operation,
            original_error=str(error)
        ) from error

    def _add(self, entity: T, context: Optional[dict] = None) -> T:
        """
        Add an entity and commit it.

        Args:
            entity: The entity to add
            context: Additional context for error reporting

        Returns:
            The added entity
        """
        try:
            self._session.add(entity)
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add", context or {"entity": str(entity)})
            raise  # Never reached, but satisfies type checker
        self._commit("add")
        self._logger.debug(f"Added entity: {entity}")
        return entity

    def _get_by_id(self, record_id: Any) -> Optional[T]:
        """
        Get an entity by its primary key.

        Args:
            record_id: The primary key

        Returns:
            The entity or None if not found
        """
        try:
            return self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id", {"id": str(record_id)})
            raise

    def _count(self, where: Iterable[Any] = ()) -> int:
        """
        Count entities matching the given criteria.

        Args:
            where: SQLAlchemy filter expressions, ANDed together

        Returns:
            Count of matching entities
        """
        try:
            stmt = select(func.count()).select_from(self._model_class).where(*where)
            result = self._session.execute(stmt)
            return result.scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count")
            raise

    def _execute_query(self, stmt: Any, operation: str = "query") -> List[T]:
        """
        Execute a select statement and return results.

        Args:
            stmt: SQLAlchemy select statement
            operation: Name used in error reporting

        Returns:
            List of entities
        """
        try:
            result = self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _execute_scalar(self, stmt: Any, operation: str = "query_scalar") -> Optional[T]:
        """
        Execute a select statement and return the first result.

        Args:
            stmt: SQLAlchemy select statement
            operation: Name used in error reporting

        Returns:
            Single entity or None
        """
        try:
            result = self._session.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _update_where(
        self,
        where: Iterable[Any],
        values: dict,
        operation: str
    ) -> int:
        """
        Apply one UPDATE to every entity matching the criteria and commit.

        Args:
            where: SQLAlchemy filter expressions, ANDed together
            values: Attribute name -> new value (None clears a field)
            operation: Name used in logging and error reporting

        Returns:
            Number of affected rows
        """
        stmt = (
            update(self._model_class)
            .where(*where)
            .values({getattr(self._model_class, key): value for key, value in values.items()})
        )
        try:
            result = self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, {"values": list(values)})
            raise
        self._commit(operation)
        return result.rowcount or 0

    def _delete_where(self, where: Iterable[Any], operation: str) -> int:
        """
        Hard-delete every entity matching the criteria and commit.

        Args:
            where: SQLAlchemy filter expressions, ANDed together
            operation: Name used in logging and error reporting

        Returns:
            Number of removed rows
        """
        stmt = delete(self._model_class).where(*where)
        try:
            result = self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise
        self._commit(operation)
        return result.rowcount or 0

    def _commit(self, operation: str = "commit") -> None:
        """
        Commit the current transaction.

        Raises:
            TransactionError: If commit fails
        """
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise TransactionError(
                repository_name=self._repository_name,
                operation=operation,
                phase="commit",
                original_error=str(e)
            ) from e
