"""
Data Lifecycle - Hash-Based Archival.

============================================================
PURPOSE
============================================================
The two algorithms that keep exactly one version of each
deduplicated measurement active per (user, device).

ARCHIVE (last activation wins):
    1. H = distinct deduplicator hashes of the data set's records
    2. Every other active record of the same (user, device)
       whose hash is in H becomes inactive, archived by the set

UNARCHIVE (undo of ARCHIVE by the same set):
    1. Group the set's own records by
       (active, archivedDatasetId, archivedTime), collecting hashes
    2. Each group's triple is the state to restore; records
       archived by the set with a hash in the group get it

    Because the set's own records may themselves have been
    archived by a newer set since, restoring their triple moves
    the victims under that newer set instead of making them
    active. Chains of any length resolve one link at a time.

IDEMPOTENCY:
    Both algorithms recompute their inputs from the store on
    every call, so re-running after a partial failure converges
    on the same end state.

============================================================
"""

import logging
from datetime import datetime
from typing import List, Optional

from core.clock import to_iso8601
from storage.models.device_data import DATA_SET_TYPE, DeviceDataSet, DeviceDatum
from storage.repositories.datum import DeviceDatumRepository
from storage.repositories.exceptions import RepositoryException

from .types import ArchiveStateGroup


logger = logging.getLogger(__name__)


ARCHIVE_STATE_FIELDS = ["active", "archived_data_set_id", "archived_time"]


def data_set_hashes(records: DeviceDatumRepository, data_set: DeviceDataSet) -> List[str]:
    """Distinct deduplicator hashes of a data set's own records, sorted."""
    hashes = records.distinct_values(
        "deduplicator_hash",
        [
            DeviceDatum.user_id == data_set.user_id,
            DeviceDatum.upload_id == data_set.upload_id,
            DeviceDatum.type != DATA_SET_TYPE,
        ],
    )
    return sorted(hashes)


def archive_device_data_using_hashes(
    records: DeviceDatumRepository,
    data_set: DeviceDataSet,
    timestamp: datetime
) -> int:
    """
    Archive other uploads' active records that share a hash with data_set.

    Args:
        records: Record repository
        data_set: The newly activated set; must carry a device id
        timestamp: archivedTime / modifiedTime to stamp

    Returns:
        Number of archived records (0 when the set has no hashes)
    """
    hashes = data_set_hashes(records, data_set)
    if not hashes:
        return 0

    return records.update_many(
        [
            DeviceDatum.user_id == data_set.user_id,
            DeviceDatum.device_id == data_set.device_id,
            DeviceDatum.upload_id != data_set.upload_id,
            DeviceDatum.type != DATA_SET_TYPE,
            DeviceDatum.active.is_(True),
            DeviceDatum.deduplicator_hash.in_(hashes),
        ],
        set_values={
            "active": False,
            "archived_data_set_id": data_set.upload_id,
            "archived_time": timestamp,
            "modified_time": timestamp,
        },
    )


def archive_state_groups(
    records: DeviceDatumRepository,
    data_set: DeviceDataSet
) -> List[ArchiveStateGroup]:
    """Group a data set's own records by archive state, collecting hashes."""
    grouped = records.aggregate_group_by(
        [
            DeviceDatum.user_id == data_set.user_id,
            DeviceDatum.upload_id == data_set.upload_id,
            DeviceDatum.type != DATA_SET_TYPE,
        ],
        ARCHIVE_STATE_FIELDS,
        "deduplicator_hash",
    )
    return [
        ArchiveStateGroup(
            active=bool(group.key["active"]),
            archived_data_set_id=group.key["archived_data_set_id"],
            archived_time=group.key["archived_time"],
            hashes=list(group.values),
        )
        for group in grouped
    ]


def restore_archive_state_group(
    records: DeviceDatumRepository,
    data_set: DeviceDataSet,
    group: ArchiveStateGroup,
    timestamp: datetime
) -> int:
    """
    Give records archived by data_set the archive state of one group.

    Returns:
        Number of restored records
    """
    set_values = {
        "active": group.active,
        "modified_time": timestamp,
    }
    unset = []
    if group.active:
        unset = ["archived_data_set_id", "archived_time"]
    else:
        set_values["archived_data_set_id"] = group.archived_data_set_id
        set_values["archived_time"] = group.archived_time

    return records.update_many(
        [
            DeviceDatum.user_id == data_set.user_id,
            DeviceDatum.device_id == data_set.device_id,
            DeviceDatum.archived_data_set_id == data_set.upload_id,
            DeviceDatum.deduplicator_hash.in_(group.hashes),
        ],
        set_values=set_values,
        unset=unset,
    )


def unarchive_device_data_using_hashes(
    records: DeviceDatumRepository,
    data_set: DeviceDataSet,
    timestamp: datetime
) -> int:
    """
    Reverse the archival previously performed by data_set.

    Inconsistent groups are logged and skipped. A store failure
    on one group does not stop the others; the first such
    failure is re-raised once every group has been tried.

    Args:
        records: Record repository
        data_set: The set whose archival is undone; must carry a device id
        timestamp: modifiedTime to stamp

    Returns:
        Number of restored records

    Raises:
        RepositoryException: First store failure met while restoring
    """
    groups = archive_state_groups(records, data_set)

    restored = 0
    first_error: Optional[RepositoryException] = None
    for group in groups:
        if not group.is_consistent:
            logger.error(
                f"Inconsistent archive state group for data set {data_set.upload_id}, skipping",
                extra={"context": {
                    "dataSetId": data_set.upload_id,
                    "active": group.active,
                    "archivedDatasetId": group.archived_data_set_id,
                    "archivedTime": to_iso8601(group.archived_time) if group.archived_time else None,
                    "hashCount": len(group.hashes),
                }},
            )
            continue
        if not group.hashes:
            continue

        try:
            restored += restore_archive_state_group(records, data_set, group, timestamp)
        except RepositoryException as e:
            logger.error(
                f"Unable to restore archive state group for data set {data_set.upload_id}: {e}",
                extra={"context": {
                    "dataSetId": data_set.upload_id,
                    "archivedDatasetId": group.archived_data_set_id,
                }},
            )
            if first_error is None:
                first_error = e

    if first_error is not None:
        raise first_error
    return restored


__all__ = [
    "ARCHIVE_STATE_FIELDS",
    "data_set_hashes",
    "archive_device_data_using_hashes",
    "archive_state_groups",
    "restore_archive_state_group",
    "unarchive_device_data_using_hashes",
]
