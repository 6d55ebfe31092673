"""
Storage Models Package.

This package contains the ORM models for the device data store.

============================================================
MODEL ORGANIZATION
============================================================

Base (base.py)
- Base
- UTCDateTime
- TimestampMixin

Device Data (device_data.py)
- DeviceDataSet: one upload batch  (table deviceDataSets)
- DeviceDatum: one record          (table deviceData)

============================================================
"""

from storage.models.base import Base, TimestampMixin, UTCDateTime
from storage.models.device_data import (
    DATA_SET_TYPE,
    DeviceDataSet,
    DeviceDatum,
)


__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    # Device Data
    "DATA_SET_TYPE",
    "DeviceDataSet",
    "DeviceDatum",
]
