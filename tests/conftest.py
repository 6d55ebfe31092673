"""
Shared fixtures for the device data lifecycle tests.

Every test gets a fresh in-memory SQLite store, both
repositories over one session, a frozen clock and the
lifecycle orchestrator wired to all of them.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

import pytest

from core.clock import MockClock
from data_lifecycle.service import DataLifecycleService
from storage.database import Database, DatabaseConfig
from storage.models.device_data import DeviceDataSet, DeviceDatum
from storage.repositories.data_set import DeviceDataSetRepository
from storage.repositories.datum import DeviceDatumRepository


START_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

USER_ID = "user-1"
DEVICE_ID = "device-1"


# ============================================================
# STORE
# ============================================================

@pytest.fixture
def database():
    """In-memory SQLite database with tables created."""
    db = Database(DatabaseConfig(url="sqlite://"))
    db.create_all_tables()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    """Session over the in-memory database."""
    with database.session_scope() as s:
        yield s


@pytest.fixture
def data_set_repository(session):
    return DeviceDataSetRepository(session)


@pytest.fixture
def datum_repository(session):
    return DeviceDatumRepository(session)


# ============================================================
# LIFECYCLE
# ============================================================

@pytest.fixture
def clock():
    """Clock frozen at START_TIME until advanced."""
    return MockClock(START_TIME)


@pytest.fixture
def service(data_set_repository, datum_repository, clock):
    return DataLifecycleService(data_set_repository, datum_repository, clock=clock)


# ============================================================
# BUILDERS
# ============================================================

@pytest.fixture
def make_data_set() -> Callable[..., DeviceDataSet]:
    """Build an unpersisted data set."""

    def _make(
        upload_id: str,
        user_id: str = USER_ID,
        device_id: Optional[str] = DEVICE_ID,
        **kwargs
    ) -> DeviceDataSet:
        return DeviceDataSet(
            user_id=user_id,
            upload_id=upload_id,
            device_id=device_id,
            **kwargs
        )

    return _make


@pytest.fixture
def make_records() -> Callable[..., List[DeviceDatum]]:
    """Build unpersisted records, one per deduplicator hash."""

    def _make(*hashes: Optional[str], record_type: str = "cbg") -> List[DeviceDatum]:
        return [
            DeviceDatum(
                type=record_type,
                time=START_TIME,
                deduplicator_hash=value,
                payload={"value": index},
            )
            for index, value in enumerate(hashes)
        ]

    return _make


@pytest.fixture
def upload(service, clock, make_data_set, make_records):
    """
    Create, fill, archive-by-hash and activate a data set.

    Advances the clock one second first so each upload gets its
    own timestamp.
    """

    def _upload(upload_id: str, *hashes: str, device_id: str = DEVICE_ID) -> DeviceDataSet:
        clock.advance(seconds=1)
        data_set = make_data_set(upload_id, device_id=device_id)
        service.create_data_set(data_set)
        service.create_data_set_data(data_set, make_records(*hashes))
        service.archive_device_data_using_hashes_from_data_set(data_set)
        service.activate_data_set_data(data_set)
        return data_set

    return _upload
