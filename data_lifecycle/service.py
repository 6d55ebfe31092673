"""
Data Lifecycle - Orchestrator.

============================================================
PURPOSE
============================================================
Composes the data set and record repositories into the
lifecycle of an upload:

    create_data_set
        -> create_data_set_data          (records inserted inactive)
        -> archive_device_data_using_hashes_from_data_set
        -> activate_data_set_data
    ...
    delete_data_set
        <- unarchive_device_data_using_hashes_from_data_set

RECORD STATE MACHINE:

    Unpersisted -> Inactive -> Active <-> ArchivedBy(set, time)
    Any state -> Destroyed (delete / destroy operations)

============================================================
FAILURE SEMANTICS
============================================================
- Closed repositories fail first with PreconditionError
- Identifying fields are validated next (ValidationError)
- Store failures are wrapped in StoreError with an
  operation-specific message; nothing is retried here
- Multi-step operations are not atomic as a whole; each step
  commits on its own and every step is safe to re-run

CONCURRENCY:
    No locking across calls. Callers serialize archive /
    unarchive for the same (user, device).

============================================================
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generator, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, SystemClock
from storage.models.device_data import DATA_SET_TYPE, DeviceDataSet, DeviceDatum
from storage.repositories.data_set import DeviceDataSetRepository
from storage.repositories.datum import DeviceDatumRepository
from storage.repositories.exceptions import (
    DuplicateRecordError,
    RepositoryClosedError,
    RepositoryException,
)

from .archival import (
    archive_device_data_using_hashes,
    unarchive_device_data_using_hashes,
)
from .config import LifecycleConfig
from .errors import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    StoreError,
    ValidationError,
)
from .types import (
    DataSetFilter,
    DataSetState,
    DataSetUpdate,
    DeletionState,
    Pagination,
    Selector,
    purge,
    soft_delete,
)
from .validation import (
    resolve_pagination,
    translate_selectors,
    validate_data_set,
    validate_device_id,
    validate_new_data_set,
    validate_records,
    validate_upload_id,
    validate_user_id,
)


logger = logging.getLogger(__name__)


@dataclass
class RemovalCounts:
    """Rows affected by a delete or destroy operation."""

    records: int = 0
    data_sets: int = 0


class DataLifecycleService:
    """
    Lifecycle orchestrator for uploaded device data.

    Usage:
        with database.session_scope() as session:
            service = DataLifecycleService.from_session(session)
            service.create_data_set(data_set)
            service.create_data_set_data(data_set, records)
            service.archive_device_data_using_hashes_from_data_set(data_set)
            service.activate_data_set_data(data_set)
    """

    def __init__(
        self,
        data_sets: DeviceDataSetRepository,
        records: DeviceDatumRepository,
        clock: Optional[ClockProtocol] = None,
        config: Optional[LifecycleConfig] = None
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            data_sets: Data set repository
            records: Record repository
            clock: Source of persisted timestamps (system clock by default)
            config: Lifecycle settings (defaults if omitted)
        """
        self._data_sets = data_sets
        self._records = records
        self._clock = clock or SystemClock()
        self._config = config or LifecycleConfig()

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Optional[ClockProtocol] = None,
        config: Optional[LifecycleConfig] = None
    ) -> "DataLifecycleService":
        """Build the orchestrator and both repositories over one session."""
        return cls(
            DeviceDataSetRepository(session),
            DeviceDatumRepository(session),
            clock=clock,
            config=config,
        )

    # =========================================================
    # INTERNALS
    # =========================================================

    def _ensure_available(self, operation: str) -> None:
        if self._data_sets.is_closed or self._records.is_closed:
            raise PreconditionError("repository is closed", operation)

    def _timestamp(self) -> datetime:
        return self._clock.timestamp(self._config.timestamp_precision_ms)

    @contextmanager
    def _store_errors(self, operation: str, message: str) -> Generator[None, None, None]:
        """Map repository exceptions onto the lifecycle taxonomy."""
        try:
            yield
        except RepositoryClosedError as e:
            raise PreconditionError("repository is closed", operation) from e
        except DuplicateRecordError as e:
            raise ConflictError("data set already exists", operation, e.details) from e
        except RepositoryException as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise StoreError(message, operation, e.details) from e

    @staticmethod
    def _log(operation: str, started: float, **fields: Any) -> None:
        fields["duration"] = int((time.perf_counter() - started) * 1_000_000)
        logger.debug(operation, extra={"context": fields})

    @staticmethod
    def _owned_records(data_set: DeviceDataSet) -> List[Any]:
        return [
            DeviceDatum.user_id == data_set.user_id,
            DeviceDatum.upload_id == data_set.upload_id,
            DeviceDatum.type != DATA_SET_TYPE,
        ]

    # =========================================================
    # DATA SETS
    # =========================================================

    def create_data_set(self, data_set: DeviceDataSet) -> DeviceDataSet:
        """
        Create a data set.

        Raises:
            PreconditionError: Repository closed
            ValidationError: user id, upload id or device id missing
            ConflictError: A live set with the same (userId, uploadId) exists
            StoreError: Store failure
        """
        operation = "create_data_set"
        self._ensure_available(operation)
        validate_new_data_set(data_set, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()

        with self._store_errors(operation, "unable to create data set"):
            if self._data_sets.get_live(data_set.user_id, data_set.upload_id) is not None:
                raise ConflictError(
                    "data set already exists",
                    operation,
                    {"userId": data_set.user_id, "uploadId": data_set.upload_id},
                )

            data_set.type = DATA_SET_TYPE
            if data_set.state is None:
                data_set.state = DataSetState.OPEN.value
            if data_set.active is None:
                data_set.active = False
            data_set.created_time = timestamp
            data_set.modified_time = timestamp
            data_set.deleted_time = None
            self._data_sets.insert(data_set)

        self._log(operation, started, userId=data_set.user_id, dataSetId=data_set.upload_id)
        return data_set

    def get_data_set(self, upload_id: str) -> Optional[DeviceDataSet]:
        """Data set by upload id, or None."""
        operation = "get_data_set"
        self._ensure_available(operation)
        validate_upload_id(upload_id, operation)

        with self._store_errors(operation, "unable to get data set"):
            return self._data_sets.get(upload_id)

    def get_data_set_or_raise(self, upload_id: str) -> DeviceDataSet:
        """
        Data set by upload id.

        Raises:
            NotFoundError: If no data set has this upload id
        """
        data_set = self.get_data_set(upload_id)
        if data_set is None:
            raise NotFoundError(
                f"data set {upload_id} not found",
                "get_data_set",
                {"uploadId": upload_id},
            )
        return data_set

    def list_user_data_sets(
        self,
        user_id: str,
        data_set_filter: Optional[DataSetFilter] = None,
        pagination: Optional[Pagination] = None
    ) -> List[DeviceDataSet]:
        """
        A user's active data sets, newest first.

        Soft-deleted sets are included only when the filter asks.
        """
        operation = "list_user_data_sets"
        self._ensure_available(operation)
        validate_user_id(user_id, operation)
        data_set_filter = data_set_filter or DataSetFilter()
        pagination = resolve_pagination(pagination, self._config, operation)

        started = time.perf_counter()
        with self._store_errors(operation, "unable to list user data sets"):
            data_sets = self._data_sets.list_for_user(
                user_id,
                device_id=data_set_filter.device_id,
                client_name=data_set_filter.client_name,
                include_deleted=data_set_filter.deleted,
                offset=pagination.offset,
                limit=pagination.size,
            )

        self._log(operation, started, userId=user_id, count=len(data_sets))
        return data_sets

    def update_data_set(self, upload_id: str, update: DataSetUpdate) -> Optional[DeviceDataSet]:
        """
        Apply an update to a live data set.

        Returns:
            The updated set, or None if no live set has this upload id
        """
        operation = "update_data_set"
        self._ensure_available(operation)
        validate_upload_id(upload_id, operation)
        if update is None or update.is_empty:
            raise ValidationError("update is missing", operation)

        started = time.perf_counter()
        values = update.to_values()
        values["modified_time"] = self._timestamp()

        with self._store_errors(operation, "unable to update data set"):
            affected = self._data_sets.update(upload_id, values)
            data_set = self._data_sets.get(upload_id) if affected else None

        self._log(operation, started, dataSetId=upload_id, affected=affected)
        return data_set

    def delete_data_set(self, data_set: DeviceDataSet) -> DeletionState:
        """
        Remove a data set's records and soft-delete the set.

        Records are hard-removed; the set document keeps existing
        with deletedTime stamped (left alone if already deleted).

        Returns:
            Deletion state of the set afterwards
        """
        operation = "delete_data_set"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()
        state = DeletionState.of(data_set)

        with self._store_errors(operation, "unable to delete data set"):
            removed = self._records.remove_many(self._owned_records(data_set))
            soft_deleted = 0
            if state is DeletionState.LIVE:
                soft_deleted = self._data_sets.soft_delete(
                    data_set.user_id,
                    data_set.upload_id,
                    deleted_time=timestamp,
                    modified_time=timestamp,
                )
                state = soft_delete(state)
                data_set.deleted_time = timestamp
                data_set.modified_time = timestamp

        self._log(
            operation,
            started,
            dataSetId=data_set.upload_id,
            removedRecords=removed,
            softDeletedDataSets=soft_deleted,
        )
        return state

    def delete_other_data_set_data(self, data_set: DeviceDataSet) -> RemovalCounts:
        """
        Remove every other upload's records for the set's device.

        The other sets are soft-deleted. Records and document of
        data_set itself are never touched.
        """
        operation = "delete_other_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        validate_device_id(data_set, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()
        counts = RemovalCounts()

        with self._store_errors(operation, "unable to remove other data set data"):
            counts.records = self._records.remove_many([
                DeviceDatum.user_id == data_set.user_id,
                DeviceDatum.device_id == data_set.device_id,
                DeviceDatum.upload_id != data_set.upload_id,
                DeviceDatum.type != DATA_SET_TYPE,
            ])
            # Other sets' modifiedTime is left alone, only their records changed
            counts.data_sets = self._data_sets.soft_delete_many(
                [
                    DeviceDataSet.user_id == data_set.user_id,
                    DeviceDataSet.device_id == data_set.device_id,
                    DeviceDataSet.upload_id != data_set.upload_id,
                ],
                deleted_time=timestamp,
            )

        self._log(
            operation,
            started,
            dataSetId=data_set.upload_id,
            removedRecords=counts.records,
            softDeletedDataSets=counts.data_sets,
        )
        return counts

    def destroy_data_for_user_by_id(self, user_id: str) -> RemovalCounts:
        """
        Purge every record and data set of a user, bypassing soft delete.
        """
        operation = "destroy_data_for_user_by_id"
        self._ensure_available(operation)
        validate_user_id(user_id, operation)

        started = time.perf_counter()
        counts = RemovalCounts()

        with self._store_errors(operation, "unable to destroy data for user by id"):
            counts.records = self._records.remove_many([DeviceDatum.user_id == user_id])
            counts.data_sets = self._data_sets.hard_remove_all([DeviceDataSet.user_id == user_id])

        self._log(
            operation,
            started,
            userId=user_id,
            removedRecords=counts.records,
            removedDataSets=counts.data_sets,
            state=purge(DeletionState.LIVE).value,
        )
        return counts

    # =========================================================
    # DATA SET DATA
    # =========================================================

    def create_data_set_data(
        self,
        data_set: DeviceDataSet,
        records: Sequence[DeviceDatum]
    ) -> int:
        """
        Insert a data set's records, inactive.

        Each record is stamped with the set's user id and upload id
        (and device id when it has none). Insertion is unordered:
        one failing record does not block the others, but any
        failure is reported as a StoreError without saying which.

        Returns:
            Number of inserted records
        """
        operation = "create_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        validate_records(records, operation)

        if len(records) == 0:
            return 0

        started = time.perf_counter()
        timestamp = self._timestamp()

        for record in records:
            record.user_id = data_set.user_id
            record.upload_id = data_set.upload_id
            if record.device_id is None:
                record.device_id = data_set.device_id
            record.active = False
            record.created_time = timestamp
            record.modified_time = timestamp

        with self._store_errors(operation, "unable to create data set data"):
            inserted = self._records.insert_many(records, ordered=False)

        self._log(operation, started, dataSetId=data_set.upload_id, dataCount=inserted)
        return inserted

    def existing_data_set_data(
        self,
        data_set: DeviceDataSet,
        selectors: Optional[Sequence[Selector]]
    ) -> List[Selector]:
        """Selectors of the set's active, non-deleted records that match."""
        operation = "existing_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        where = translate_selectors(selectors, operation)

        started = time.perf_counter()
        with self._store_errors(operation, "unable to get existing data set data selectors"):
            found = self._records.find([
                *where,
                DeviceDatum.user_id == data_set.user_id,
                DeviceDatum.upload_id == data_set.upload_id,
                DeviceDatum.active.is_(True),
                DeviceDatum.deleted_time.is_(None),
            ])

        self._log(operation, started, dataSetId=data_set.upload_id, count=len(found))
        return [
            Selector(id=datum.id, deduplicator_hash=datum.deduplicator_hash, origin_id=datum.origin_id)
            for datum in found
        ]

    def activate_data_set_data(
        self,
        data_set: DeviceDataSet,
        selectors: Optional[Sequence[Selector]] = None
    ) -> int:
        """
        Activate the set and its inactive, non-deleted records.

        Activated records lose any archive fields. Running it again
        leaves records unchanged.

        Returns:
            Number of activated records
        """
        operation = "activate_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        where = translate_selectors(selectors, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()

        with self._store_errors(operation, "unable to activate data set data"):
            self._data_sets.update_many(
                [
                    DeviceDataSet.user_id == data_set.user_id,
                    DeviceDataSet.upload_id == data_set.upload_id,
                    DeviceDataSet.type == DATA_SET_TYPE,
                    DeviceDataSet.deleted_time.is_(None),
                ],
                {"active": True, "modified_time": timestamp},
            )
            activated = self._records.update_many(
                [
                    *where,
                    *self._owned_records(data_set),
                    DeviceDatum.active.is_(False),
                    DeviceDatum.deleted_time.is_(None),
                ],
                set_values={"active": True, "modified_time": timestamp},
                unset=["archived_data_set_id", "archived_time"],
            )
        data_set.active = True
        data_set.modified_time = timestamp

        self._log(operation, started, dataSetId=data_set.upload_id, activated=activated)
        return activated

    def archive_data_set_data(
        self,
        data_set: DeviceDataSet,
        selectors: Optional[Sequence[Selector]] = None
    ) -> int:
        """
        Deactivate matching active records of the set itself.

        Returns:
            Number of archived records
        """
        operation = "archive_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        where = translate_selectors(selectors, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()

        with self._store_errors(operation, "unable to archive data set data"):
            archived = self._records.update_many(
                [
                    *where,
                    DeviceDatum.user_id == data_set.user_id,
                    DeviceDatum.upload_id == data_set.upload_id,
                    DeviceDatum.active.is_(True),
                    DeviceDatum.deleted_time.is_(None),
                ],
                set_values={
                    "active": False,
                    "archived_time": timestamp,
                    "modified_time": timestamp,
                },
                unset=["archived_data_set_id"],
            )

        self._log(operation, started, dataSetId=data_set.upload_id, archived=archived)
        return archived

    def delete_data_set_data(
        self,
        data_set: DeviceDataSet,
        selectors: Optional[Sequence[Selector]] = None
    ) -> int:
        """
        Soft-delete matching records of the set.

        Returns:
            Number of soft-deleted records
        """
        operation = "delete_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        where = translate_selectors(selectors, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()

        with self._store_errors(operation, "unable to delete data set data"):
            deleted = self._records.update_many(
                [
                    *where,
                    DeviceDatum.user_id == data_set.user_id,
                    DeviceDatum.upload_id == data_set.upload_id,
                    DeviceDatum.deleted_time.is_(None),
                ],
                set_values={
                    "active": False,
                    "archived_time": timestamp,
                    "deleted_time": timestamp,
                    "modified_time": timestamp,
                },
                unset=["archived_data_set_id"],
            )

        self._log(operation, started, dataSetId=data_set.upload_id, deleted=deleted)
        return deleted

    def destroy_deleted_data_set_data(
        self,
        data_set: DeviceDataSet,
        selectors: Optional[Sequence[Selector]] = None
    ) -> int:
        """
        Purge matching records of the set that are already soft-deleted.

        Returns:
            Number of purged records
        """
        operation = "destroy_deleted_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        where = translate_selectors(selectors, operation)

        started = time.perf_counter()
        with self._store_errors(operation, "unable to destroy deleted data set data"):
            destroyed = self._records.remove_many([
                *where,
                DeviceDatum.user_id == data_set.user_id,
                DeviceDatum.upload_id == data_set.upload_id,
                DeviceDatum.deleted_time.is_not(None),
            ])

        self._log(operation, started, dataSetId=data_set.upload_id, destroyed=destroyed)
        return destroyed

    def destroy_data_set_data(
        self,
        data_set: DeviceDataSet,
        selectors: Optional[Sequence[Selector]] = None
    ) -> int:
        """
        Purge matching records of the set regardless of deletion state.

        Returns:
            Number of purged records
        """
        operation = "destroy_data_set_data"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        where = translate_selectors(selectors, operation)

        started = time.perf_counter()
        with self._store_errors(operation, "unable to destroy data set data"):
            destroyed = self._records.remove_many([
                *where,
                DeviceDatum.user_id == data_set.user_id,
                DeviceDatum.upload_id == data_set.upload_id,
            ])

        self._log(operation, started, dataSetId=data_set.upload_id, destroyed=destroyed)
        return destroyed

    # =========================================================
    # HASH-BASED ARCHIVAL
    # =========================================================

    def archive_device_data_using_hashes_from_data_set(self, data_set: DeviceDataSet) -> int:
        """
        Archive older uploads' records superseded by this set.

        Every other active record of the same (user, device) whose
        deduplicator hash appears among this set's records becomes
        inactive, archived by this set's upload id.

        Returns:
            Number of archived records
        """
        operation = "archive_device_data_using_hashes_from_data_set"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        validate_device_id(data_set, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()

        with self._store_errors(
            operation,
            "unable to archive device data using hashes from data set",
        ):
            archived = archive_device_data_using_hashes(self._records, data_set, timestamp)

        self._log(
            operation,
            started,
            userId=data_set.user_id,
            deviceId=data_set.device_id,
            dataSetId=data_set.upload_id,
            archived=archived,
        )
        return archived

    def unarchive_device_data_using_hashes_from_data_set(self, data_set: DeviceDataSet) -> int:
        """
        Undo the archival this set performed.

        Records archived by this set get back the archive state
        this set's own matching records are in now: active, or
        archived by whichever newer set archived those.

        Returns:
            Number of restored records
        """
        operation = "unarchive_device_data_using_hashes_from_data_set"
        self._ensure_available(operation)
        validate_data_set(data_set, operation)
        validate_device_id(data_set, operation)

        started = time.perf_counter()
        timestamp = self._timestamp()

        with self._store_errors(operation, "unable to transfer device data active"):
            restored = unarchive_device_data_using_hashes(self._records, data_set, timestamp)

        self._log(
            operation,
            started,
            userId=data_set.user_id,
            deviceId=data_set.device_id,
            dataSetId=data_set.upload_id,
            restored=restored,
        )
        return restored


__all__ = [
    "RemovalCounts",
    "DataLifecycleService",
]
