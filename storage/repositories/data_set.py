"""
Device Data Set Repository.

============================================================
PURPOSE
============================================================
Document-level access to data sets (table deviceDataSets).
No record-level knowledge: the repository never touches
deviceData.

============================================================
OPERATIONS
============================================================
- get / get_by_id / get_live: single data set reads
- list_for_user: filtered, paginated listing
- insert: create, failing on a live duplicate
- update / update_many: field changes
- soft_delete / soft_delete_many: stamp deletedTime
- hard_remove_all: purge

============================================================
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from storage.models.device_data import DATA_SET_TYPE, DeviceDataSet
from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import DuplicateRecordError


class DeviceDataSetRepository(BaseRepository[DeviceDataSet]):
    """
    Repository for data set documents.

    ============================================================
    UNIQUENESS
    ============================================================
    (userId, uploadId, type) is unique among rows whose
    deletedTime is NULL. A soft-deleted set does not block a new
    upload with the same identifiers.

    ============================================================
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, DeviceDataSet, "DeviceDataSetRepository")

    # =========================================================
    # CREATE OPERATIONS
    # =========================================================

    def insert(self, data_set: DeviceDataSet) -> DeviceDataSet:
        """
        Insert a data set.

        Args:
            data_set: The data set to persist

        Returns:
            The persisted data set

        Raises:
            DuplicateRecordError: If a live set with the same
                (userId, uploadId) exists
        """
        self._ensure_open("insert")
        if self.get_live(data_set.user_id, data_set.upload_id) is not None:
            raise DuplicateRecordError(
                repository_name=self._repository_name,
                constraint_field="uploadId",
                value=data_set.upload_id,
            )
        return self._add(
            data_set,
            {"constraint_field": "uploadId", "value": data_set.upload_id},
        )

    # =========================================================
    # READ OPERATIONS
    # =========================================================

    def get(self, upload_id: str) -> Optional[DeviceDataSet]:
        """
        Get a data set by upload ID, in any deletion state.

        A live set is preferred over soft-deleted ones sharing the
        upload ID.

        Args:
            upload_id: The upload identifier

        Returns:
            DeviceDataSet or None
        """
        self._ensure_open("get")
        stmt = (
            select(DeviceDataSet)
            .where(DeviceDataSet.upload_id == upload_id)
            .order_by(DeviceDataSet.deleted_time.is_not(None), desc(DeviceDataSet.created_time))
        )
        return self._execute_scalar(stmt, "get")

    def get_by_id(self, data_set_id: str) -> Optional[DeviceDataSet]:
        """Get a data set by its surrogate ID."""
        self._ensure_open("get_by_id")
        return self._get_by_id(data_set_id)

    def get_live(self, user_id: str, upload_id: str) -> Optional[DeviceDataSet]:
        """
        Get the non-deleted data set for (userId, uploadId).

        Returns:
            DeviceDataSet or None
        """
        self._ensure_open("get_live")
        stmt = select(DeviceDataSet).where(
            DeviceDataSet.user_id == user_id,
            DeviceDataSet.upload_id == upload_id,
            DeviceDataSet.type == DATA_SET_TYPE,
            DeviceDataSet.deleted_time.is_(None),
        )
        return self._execute_scalar(stmt, "get_live")

    def list_for_user(
        self,
        user_id: str,
        device_id: Optional[str] = None,
        client_name: Optional[str] = None,
        include_deleted: bool = False,
        active_only: bool = True,
        offset: int = 0,
        limit: int = 100
    ) -> List[DeviceDataSet]:
        """
        List a user's data sets, newest first.

        Args:
            user_id: Owning user
            device_id: Only sets from this device
            client_name: Only sets uploaded by this client
            include_deleted: Include soft-deleted sets
            active_only: Only activated sets
            offset: Number of sets to skip
            limit: Maximum sets to return

        Returns:
            List of DeviceDataSet
        """
        self._ensure_open("list_for_user")
        where: List[Any] = [
            DeviceDataSet.user_id == user_id,
            DeviceDataSet.type == DATA_SET_TYPE,
        ]
        if active_only:
            where.append(DeviceDataSet.active.is_(True))
        if not include_deleted:
            where.append(DeviceDataSet.deleted_time.is_(None))
        if device_id is not None:
            where.append(DeviceDataSet.device_id == device_id)
        if client_name is not None:
            where.append(DeviceDataSet.client_name == client_name)

        stmt = (
            select(DeviceDataSet)
            .where(*where)
            .order_by(desc(DeviceDataSet.created_time), desc(DeviceDataSet.id))
            .offset(offset)
            .limit(limit)
        )
        return self._execute_query(stmt, "list_for_user")

    def count(self, where: Sequence[Any] = ()) -> int:
        """Count data sets matching the criteria."""
        self._ensure_open("count")
        return self._count(where)

    # =========================================================
    # UPDATE OPERATIONS
    # =========================================================

    def update(self, upload_id: str, values: Dict[str, Any]) -> int:
        """
        Update the live data set with the given upload ID.

        Args:
            upload_id: The upload identifier
            values: Attribute name -> new value

        Returns:
            Number of affected sets (0 or 1)
        """
        self._ensure_open("update")
        return self._update_where(
            [
                DeviceDataSet.upload_id == upload_id,
                DeviceDataSet.deleted_time.is_(None),
            ],
            values,
            "update",
        )

    def update_many(self, where: Sequence[Any], values: Dict[str, Any]) -> int:
        """Apply values to every matching data set."""
        self._ensure_open("update_many")
        return self._update_where(where, values, "update_many")

    # =========================================================
    # DELETE OPERATIONS
    # =========================================================

    def soft_delete(
        self,
        user_id: str,
        upload_id: str,
        deleted_time: datetime,
        modified_time: Optional[datetime] = None
    ) -> int:
        """
        Soft-delete the live data set for (userId, uploadId).

        Returns:
            Number of affected sets (0 if already deleted or absent)
        """
        self._ensure_open("soft_delete")
        return self.soft_delete_many(
            [
                DeviceDataSet.user_id == user_id,
                DeviceDataSet.upload_id == upload_id,
            ],
            deleted_time,
            modified_time,
        )

    def soft_delete_many(
        self,
        where: Sequence[Any],
        deleted_time: datetime,
        modified_time: Optional[datetime] = None
    ) -> int:
        """
        Soft-delete every live data set matching the criteria.

        Args:
            where: Filter expressions
            deleted_time: Deletion timestamp
            modified_time: Modification timestamp, left alone if None

        Returns:
            Number of affected sets
        """
        self._ensure_open("soft_delete_many")
        values: Dict[str, Any] = {"deleted_time": deleted_time}
        if modified_time is not None:
            values["modified_time"] = modified_time
        return self._update_where(
            [
                *where,
                DeviceDataSet.type == DATA_SET_TYPE,
                DeviceDataSet.deleted_time.is_(None),
            ],
            values,
            "soft_delete",
        )

    def hard_remove_all(self, where: Sequence[Any]) -> int:
        """
        Purge every data set matching the criteria.

        Returns:
            Number of removed sets
        """
        self._ensure_open("hard_remove_all")
        return self._delete_where(where, "hard_remove_all")
