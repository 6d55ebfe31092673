"""
Device Datum Repository.

============================================================
PURPOSE
============================================================
Bulk access to individual device records (table deviceData).
This is the record-level store the lifecycle engine composes
with the data set repository.

============================================================
OPERATIONS
============================================================
- insert_many: unordered bulk insert
- update_many: set / unset fields on every match
- remove_many: hard delete every match
- distinct_values: distinct values of one field
- aggregate_group_by: group matches by key fields and collect
  one field's values per group
- find / count: filtered reads

Filters are SQLAlchemy expressions over DeviceDatum columns,
ANDed together.

============================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import distinct, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.device_data import DeviceDatum
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import BulkWriteError


@dataclass
class GroupedValues:
    """One group produced by aggregate_group_by."""

    key: Dict[str, Any]
    """Group key field name -> value (None for NULL)."""

    values: List[Any] = field(default_factory=list)
    """Distinct non-null values of the collected field in this group."""


class DeviceDatumRepository(BaseRepository[DeviceDatum]):
    """
    Repository for device records.

    ============================================================
    ATOMICITY
    ============================================================
    Each call is one store request and commits on its own.
    Callers compose calls; nothing here spans calls.

    ============================================================
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, DeviceDatum, "DeviceDatumRepository")

    # =========================================================
    # CREATE OPERATIONS
    # =========================================================

    def insert_many(
        self,
        data: Iterable[DeviceDatum],
        ordered: bool = False
    ) -> int:
        """
        Insert many records.

        The whole batch is tried in one transaction first. If that
        fails and ordered is False, every record is retried in its
        own transaction so one bad record does not block the rest.

        Args:
            data: Records to insert
            ordered: Stop at (and roll back on) the first failure

        Returns:
            Number of inserted records

        Raises:
            BulkWriteError: If any record failed in unordered mode
            RepositoryException: If the batch failed in ordered mode
        """
        self._ensure_open("insert_many")
        data = list(data)
        if not data:
            return 0

        try:
            self._session.add_all(data)
            self._session.flush()
            self._session.commit()
            return len(data)
        except SQLAlchemyError as e:
            if ordered:
                self._handle_db_error(e, "insert_many", {"count": len(data)})
            self._session.rollback()
            self._logger.warning(
                f"Batch insert of {len(data)} records failed, retrying unordered: {e}"
            )

        inserted = 0
        failed = 0
        first_error: Optional[str] = None
        for datum in data:
            try:
                self._session.add(datum)
                self._session.flush()
                self._session.commit()
                inserted += 1
            except SQLAlchemyError as e:
                self._session.rollback()
                failed += 1
                if first_error is None:
                    first_error = str(e)

        if failed:
            self._logger.error(
                f"Unordered insert: {failed} of {len(data)} records failed",
                extra={"context": {"inserted": inserted, "failed": failed}},
            )
            raise BulkWriteError(
                repository_name=self._repository_name,
                operation="insert_many",
                failed_count=failed,
                attempted_count=len(data),
                first_error=first_error or "unknown",
            )
        return inserted

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def find(
        self,
        where: Sequence[Any] = (),
        order_by: Sequence[Any] = (),
        offset: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[DeviceDatum]:
        """
        Find records matching the criteria.

        Args:
            where: Filter expressions
            order_by: Sort expressions
            offset: Number of records to skip
            limit: Maximum records to return

        Returns:
            List of DeviceDatum
        """
        self._ensure_open("find")
        stmt = select(DeviceDatum).where(*where).order_by(*order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._execute_query(stmt, "find")

    def count(self, where: Sequence[Any] = ()) -> int:
        """Count records matching the criteria."""
        self._ensure_open("count")
        return self._count(where)

    def distinct_values(self, field_name: str, where: Sequence[Any] = ()) -> Set[Any]:
        """
        Distinct non-null values of one field among matching records.

        Args:
            field_name: DeviceDatum attribute name
            where: Filter expressions

        Returns:
            Set of values
        """
        self._ensure_open("distinct_values")
        column = getattr(DeviceDatum, field_name)
        stmt = select(distinct(column)).where(*where, column.is_not(None))
        try:
            result = self._session.execute(stmt)
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "distinct_values", {"field": field_name})
            raise

    def aggregate_group_by(
        self,
        where: Sequence[Any],
        group_keys: Sequence[str],
        collect: str
    ) -> List[GroupedValues]:
        """
        Group matching records by key fields, collecting one field.

        NULL is a group key value of its own. NULL collected values
        are left out of a group's values.

        Args:
            where: Filter expressions
            group_keys: DeviceDatum attribute names forming the group key
            collect: DeviceDatum attribute name whose values are collected

        Returns:
            Groups in first-seen order
        """
        self._ensure_open("aggregate_group_by")
        key_columns = [getattr(DeviceDatum, key) for key in group_keys]
        collect_column = getattr(DeviceDatum, collect)
        stmt = (
            select(*key_columns, collect_column)
            .where(*where)
            .group_by(*key_columns, collect_column)
            .order_by(*key_columns, collect_column)
        )
        try:
            rows = self._session.execute(stmt).all()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "aggregate_group_by", {"group_keys": list(group_keys)})
            raise

        groups: Dict[tuple, GroupedValues] = {}
        for row in rows:
            key = tuple(row[:len(group_keys)])
            value = row[len(group_keys)]
            group = groups.get(key)
            if group is None:
                group = GroupedValues(key=dict(zip(group_keys, key)))
                groups[key] = group
            if value is not None:
                group.values.append(value)
        return list(groups.values())

    # =========================================================
    # UPDATE OPERATIONS
    # =========================================================

    def update_many(
        self,
        where: Sequence[Any],
        set_values: Optional[Dict[str, Any]] = None,
        unset: Iterable[str] = ()
    ) -> int:
        """
        Set and unset fields on every matching record.

        Args:
            where: Filter expressions
            set_values: Attribute name -> new value
            unset: Attribute names to clear

        Returns:
            Number of affected records
        """
        self._ensure_open("update_many")
        values = dict(set_values or {})
        for name in unset:
            values[name] = None
        if not values:
            return 0
        return self._update_where(where, values, "update_many")

    # =========================================================
    # DELETE OPERATIONS
    # =========================================================

    def remove_many(self, where: Sequence[Any]) -> int:
        """
        Hard-delete every matching record.

        Returns:
            Number of removed records
        """
        self._ensure_open("remove_many")
        return self._delete_where(where, "remove_many")
