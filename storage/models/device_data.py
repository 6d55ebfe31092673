"""
Device Data ORM Models.

============================================================
PURPOSE
============================================================
Models for uploaded device data: the data set (one upload
batch) and the individual records (datums) it carries.

============================================================
DATA LIFECYCLE ROLE
============================================================
- DeviceDataSet: created open and inactive, activated once its
  records are in, soft-deleted by deletedTime, purged on
  account erasure
- DeviceDatum: inserted inactive, activated with its set,
  archived when a newer upload from the same device carries
  the same deduplicator hash, restored when that upload is
  deleted

============================================================
PERSISTED FIELD CONTRACT
============================================================
Column names are a stable boundary shared with other readers
of the same tables: userId, uploadId, deviceId, type, _active,
_deduplicatorHash, archivedDatasetId, archivedTime,
deletedTime, createdTime, modifiedTime, _state.

============================================================
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Index,
    Integer,
    JSON,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin, UTCDateTime


DATA_SET_TYPE = "upload"
"""Persisted type of a data set row; records never carry it."""


def _new_id() -> str:
    return uuid.uuid4().hex


class DeviceDataSet(Base, TimestampMixin):
    """
    One upload batch of device data.

    ============================================================
    IDENTITY
    ============================================================
    - id: Surrogate primary key
    - (userId, uploadId, type="upload"): natural key, unique
      among rows whose deletedTime is NULL

    ============================================================
    STATE
    ============================================================
    - _state: "open" while records are still arriving, "closed"
      once the upload is complete
    - _active: whether the set is visible
    - deletedTime: soft deletion marker

    ============================================================
    """

    __tablename__ = "deviceDataSets"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=_new_id,
        comment="Surrogate identifier"
    )

    user_id: Mapped[str] = mapped_column(
        "userId",
        String(64),
        nullable=False,
        comment="Owning user"
    )

    upload_id: Mapped[str] = mapped_column(
        "uploadId",
        String(64),
        nullable=False,
        comment="Upload identifier, natural key component"
    )

    device_id: Mapped[Optional[str]] = mapped_column(
        "deviceId",
        String(255),
        nullable=True,
        comment="Device that produced the upload"
    )

    device_model: Mapped[Optional[str]] = mapped_column(
        "deviceModel",
        String(255),
        nullable=True,
    )

    device_serial_number: Mapped[Optional[str]] = mapped_column(
        "deviceSerialNumber",
        String(255),
        nullable=True,
    )

    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=DATA_SET_TYPE,
        comment="Always 'upload' for data sets"
    )

    data_set_type: Mapped[Optional[str]] = mapped_column(
        "dataSetType",
        String(32),
        nullable=True,
        comment="'normal' or 'continuous'"
    )

    state: Mapped[str] = mapped_column(
        "_state",
        String(16),
        nullable=False,
        default="open",
        comment="open | closed"
    )

    active: Mapped[bool] = mapped_column(
        "_active",
        Boolean,
        nullable=False,
        default=False,
    )

    deduplicator: Mapped[Optional[dict]] = mapped_column(
        "_deduplicator",
        JSON(none_as_null=True),
        nullable=True,
        comment="Descriptor of the hashing scheme used for this set's records"
    )

    client_name: Mapped[Optional[str]] = mapped_column(
        "clientName",
        String(255),
        nullable=True,
    )

    client_version: Mapped[Optional[str]] = mapped_column(
        "clientVersion",
        String(64),
        nullable=True,
    )

    time: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Upload time reported by the client"
    )

    time_zone_name: Mapped[Optional[str]] = mapped_column(
        "timezone",
        String(64),
        nullable=True,
    )

    time_zone_offset: Mapped[Optional[int]] = mapped_column(
        "timezoneOffset",
        Integer,
        nullable=True,
    )

    deleted_time: Mapped[Optional[datetime]] = mapped_column(
        "deletedTime",
        UTCDateTime(),
        nullable=True,
    )

    __table_args__ = (
        Index(
            "UniqueUploadId",
            "userId",
            "uploadId",
            "type",
            unique=True,
            sqlite_where=text('"deletedTime" IS NULL'),
            postgresql_where=text('"deletedTime" IS NULL'),
        ),
        Index("UserIdTypeWeighted", "userId", "type", "_active", "createdTime"),
        Index("UserIdDeviceId", "userId", "deviceId", "type"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeviceDataSet userId={self.user_id} uploadId={self.upload_id} "
            f"deviceId={self.device_id} active={self.active}>"
        )


class DeviceDatum(Base, TimestampMixin):
    """
    One measurement or event belonging to exactly one data set.

    ============================================================
    ARCHIVE STATE
    ============================================================
    archivedDatasetId and archivedTime are both set or both
    NULL. When both are set the datum is inactive and the
    archivedDatasetId names the upload whose activation
    superseded it.

    ============================================================
    """

    __tablename__ = "deviceData"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=_new_id,
    )

    user_id: Mapped[Optional[str]] = mapped_column(
        "userId",
        String(64),
        nullable=True,
    )

    upload_id: Mapped[Optional[str]] = mapped_column(
        "uploadId",
        String(64),
        nullable=True,
        comment="Owning data set"
    )

    device_id: Mapped[Optional[str]] = mapped_column(
        "deviceId",
        String(255),
        nullable=True,
    )

    type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Record kind, never 'upload'"
    )

    time: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Measurement time"
    )

    deduplicator_hash: Mapped[Optional[str]] = mapped_column(
        "_deduplicatorHash",
        String(128),
        nullable=True,
        comment="Opaque deduplication hash, absent for kinds outside dedup"
    )

    origin_id: Mapped[Optional[str]] = mapped_column(
        "originId",
        String(255),
        nullable=True,
    )

    active: Mapped[bool] = mapped_column(
        "_active",
        Boolean,
        nullable=False,
        default=False,
    )

    archived_data_set_id: Mapped[Optional[str]] = mapped_column(
        "archivedDatasetId",
        String(64),
        nullable=True,
    )

    archived_time: Mapped[Optional[datetime]] = mapped_column(
        "archivedTime",
        UTCDateTime(),
        nullable=True,
    )

    deleted_time: Mapped[Optional[datetime]] = mapped_column(
        "deletedTime",
        UTCDateTime(),
        nullable=True,
    )

    payload: Mapped[Optional[Any]] = mapped_column(
        JSON(none_as_null=True),
        nullable=True,
        comment="Measurement body, opaque to this layer"
    )

    __table_args__ = (
        Index("UserIdUploadId", "userId", "uploadId", "type"),
        Index("UserIdOriginId", "userId", "originId"),
        Index(
            "DeduplicatorHash",
            "userId",
            "deviceId",
            "type",
            "_active",
            "_deduplicatorHash",
        ),
        Index("ArchivedDatasetId", "userId", "deviceId", "archivedDatasetId"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeviceDatum id={self.id} uploadId={self.upload_id} type={self.type} "
            f"active={self.active} archivedDatasetId={self.archived_data_set_id}>"
        )
