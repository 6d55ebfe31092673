"""
Tests for the Device Data Repositories.

============================================================
PURPOSE
============================================================
Covers the two repositories the lifecycle engine composes:
1. Data set documents (insert, reads, soft delete, purge)
2. Records (bulk insert, bulk update, grouping, removal)
3. Closed-repository precondition
4. Error wrapping

============================================================
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from storage.models.device_data import DeviceDataSet, DeviceDatum
from storage.repositories.exceptions import (
    BulkWriteError,
    ConnectionError,
    DuplicateRecordError,
    RepositoryClosedError,
)

from tests.conftest import DEVICE_ID, START_TIME, USER_ID


def _persist_data_set(repository, upload_id, user_id=USER_ID, device_id=DEVICE_ID, **kwargs):
    data_set = DeviceDataSet(
        user_id=user_id,
        upload_id=upload_id,
        device_id=device_id,
        type="upload",
        created_time=kwargs.pop("created_time", START_TIME),
        **kwargs
    )
    return repository.insert(data_set)


def _datum(upload_id, value_hash, **kwargs):
    return DeviceDatum(
        user_id=kwargs.pop("user_id", USER_ID),
        upload_id=upload_id,
        device_id=kwargs.pop("device_id", DEVICE_ID),
        type=kwargs.pop("type", "cbg"),
        deduplicator_hash=value_hash,
        **kwargs
    )


# ============================================================
# DATA SET REPOSITORY TESTS
# ============================================================

class TestDeviceDataSetRepository:
    """Tests for data set documents."""

    def test_insert_and_get(self, data_set_repository):
        """Inserted set is readable by upload id."""
        _persist_data_set(data_set_repository, "upload-a")

        found = data_set_repository.get("upload-a")

        assert found is not None
        assert found.user_id == USER_ID
        assert found.type == "upload"
        assert found.state == "open"
        assert found.active is False
        assert data_set_repository.get_by_id(found.id) is found

    def test_get_missing_returns_none(self, data_set_repository):
        assert data_set_repository.get("nope") is None

    def test_insert_live_duplicate_rejected(self, data_set_repository):
        """A second live set with the same (userId, uploadId) is a duplicate."""
        _persist_data_set(data_set_repository, "upload-a")

        with pytest.raises(DuplicateRecordError):
            _persist_data_set(data_set_repository, "upload-a")

        assert data_set_repository.count([DeviceDataSet.upload_id == "upload-a"]) == 1

    def test_insert_allowed_after_soft_delete(self, data_set_repository):
        """A soft-deleted set does not block the same identifiers."""
        _persist_data_set(data_set_repository, "upload-a")
        data_set_repository.soft_delete(USER_ID, "upload-a", deleted_time=START_TIME)

        _persist_data_set(
            data_set_repository,
            "upload-a",
            created_time=START_TIME + timedelta(seconds=1),
        )

        live = data_set_repository.get_live(USER_ID, "upload-a")
        assert live is not None
        assert live.deleted_time is None
        assert data_set_repository.get("upload-a").id == live.id

    def test_list_for_user_filters_and_orders(self, data_set_repository):
        """Listing returns active, live sets of the user, newest first."""
        for index, upload_id in enumerate(["a", "b", "c"]):
            _persist_data_set(
                data_set_repository,
                upload_id,
                active=True,
                created_time=START_TIME + timedelta(minutes=index),
            )
        _persist_data_set(data_set_repository, "inactive")
        _persist_data_set(data_set_repository, "other-user", user_id="user-2", active=True)
        data_set_repository.soft_delete(USER_ID, "b", deleted_time=START_TIME)

        listed = data_set_repository.list_for_user(USER_ID)
        assert [ds.upload_id for ds in listed] == ["c", "a"]

        with_deleted = data_set_repository.list_for_user(USER_ID, include_deleted=True)
        assert [ds.upload_id for ds in with_deleted] == ["c", "b", "a"]

        paged = data_set_repository.list_for_user(USER_ID, offset=1, limit=1)
        assert [ds.upload_id for ds in paged] == ["a"]

    def test_soft_delete_is_noop_when_already_deleted(self, data_set_repository):
        _persist_data_set(data_set_repository, "upload-a")
        first = START_TIME
        second = START_TIME + timedelta(hours=1)

        assert data_set_repository.soft_delete(USER_ID, "upload-a", deleted_time=first) == 1
        assert data_set_repository.soft_delete(USER_ID, "upload-a", deleted_time=second) == 0
        assert data_set_repository.get("upload-a").deleted_time == first

    def test_update_touches_live_set_only(self, data_set_repository):
        _persist_data_set(data_set_repository, "upload-a")

        affected = data_set_repository.update("upload-a", {"state": "closed"})

        assert affected == 1
        assert data_set_repository.get("upload-a").state == "closed"
        assert data_set_repository.update("missing", {"state": "closed"}) == 0

    def test_hard_remove_all(self, data_set_repository):
        _persist_data_set(data_set_repository, "a")
        _persist_data_set(data_set_repository, "b")
        _persist_data_set(data_set_repository, "c", user_id="user-2")

        removed = data_set_repository.hard_remove_all([DeviceDataSet.user_id == USER_ID])

        assert removed == 2
        assert data_set_repository.count() == 1

    def test_datetimes_round_trip_as_utc(self, data_set_repository):
        """SQLite hands back aware UTC datetimes."""
        _persist_data_set(data_set_repository, "upload-a", time=START_TIME)
        data_set_repository.session.expire_all()

        found = data_set_repository.get("upload-a")

        assert found.time == START_TIME
        assert found.time.tzinfo is not None
        assert found.created_time.utcoffset() == timedelta(0)


# ============================================================
# DATUM REPOSITORY TESTS
# ============================================================

class TestDeviceDatumRepository:
    """Tests for bulk record access."""

    def test_insert_many(self, datum_repository):
        inserted = datum_repository.insert_many([_datum("a", "h1"), _datum("a", "h2")])

        assert inserted == 2
        assert datum_repository.count() == 2

    def test_insert_many_empty(self, datum_repository):
        assert datum_repository.insert_many([]) == 0

    def test_insert_many_unordered_keeps_good_records(self, datum_repository):
        """One failing record does not block the others."""
        records = [
            _datum("a", "h1", id="dup"),
            _datum("a", "h2", id="dup"),
            _datum("a", "h3"),
        ]

        with pytest.raises(BulkWriteError) as exc_info:
            datum_repository.insert_many(records, ordered=False)

        assert exc_info.value.failed_count == 1
        assert exc_info.value.attempted_count == 3
        assert datum_repository.count() == 2

    def test_distinct_values_excludes_null(self, datum_repository):
        datum_repository.insert_many([
            _datum("a", "h1"),
            _datum("a", "h1"),
            _datum("a", None),
            _datum("b", "h9"),
        ])

        values = datum_repository.distinct_values(
            "deduplicator_hash",
            [DeviceDatum.upload_id == "a"],
        )

        assert values == {"h1"}

    def test_aggregate_group_by(self, datum_repository):
        archived_time = START_TIME
        datum_repository.insert_many([
            _datum("a", "h1", active=True),
            _datum("a", "h2", active=True),
            _datum("a", "h3", archived_data_set_id="b", archived_time=archived_time),
            _datum("a", None, active=True),
        ])

        groups = datum_repository.aggregate_group_by(
            [DeviceDatum.upload_id == "a"],
            ["active", "archived_data_set_id", "archived_time"],
            "deduplicator_hash",
        )
        by_active = {group.key["active"]: group for group in groups}

        assert len(groups) == 2
        assert sorted(by_active[True].values) == ["h1", "h2"]
        assert by_active[True].key["archived_data_set_id"] is None
        assert by_active[False].values == ["h3"]
        assert by_active[False].key["archived_data_set_id"] == "b"
        assert by_active[False].key["archived_time"] == archived_time

    def test_update_many_sets_and_unsets(self, datum_repository):
        datum_repository.insert_many([
            _datum("a", "h1", archived_data_set_id="x", archived_time=START_TIME),
            _datum("a", "h2", archived_data_set_id="x", archived_time=START_TIME),
            _datum("b", "h1", archived_data_set_id="x", archived_time=START_TIME),
        ])

        affected = datum_repository.update_many(
            [DeviceDatum.upload_id == "a"],
            set_values={"active": True},
            unset=["archived_data_set_id", "archived_time"],
        )

        assert affected == 2
        updated = datum_repository.find([DeviceDatum.upload_id == "a"])
        assert all(d.active for d in updated)
        assert all(d.archived_data_set_id is None for d in updated)
        assert all(d.archived_time is None for d in updated)
        untouched = datum_repository.find([DeviceDatum.upload_id == "b"])
        assert untouched[0].archived_data_set_id == "x"

    def test_update_many_without_values_is_noop(self, datum_repository):
        datum_repository.insert_many([_datum("a", "h1")])

        assert datum_repository.update_many([DeviceDatum.upload_id == "a"]) == 0

    def test_remove_many(self, datum_repository):
        datum_repository.insert_many([_datum("a", "h1"), _datum("b", "h1")])

        removed = datum_repository.remove_many([DeviceDatum.upload_id == "a"])

        assert removed == 1
        assert [d.upload_id for d in datum_repository.find()] == ["b"]


# ============================================================
# FAILURE HANDLING TESTS
# ============================================================

class TestRepositoryFailures:
    """Tests for closed repositories and error wrapping."""

    def test_closed_repository_refuses_work(self, datum_repository, data_set_repository):
        datum_repository.close()
        data_set_repository.close()

        assert datum_repository.is_closed
        with pytest.raises(RepositoryClosedError):
            datum_repository.find()
        with pytest.raises(RepositoryClosedError):
            datum_repository.update_many([], {"active": True})
        with pytest.raises(RepositoryClosedError):
            data_set_repository.get("upload-a")

    def test_operational_error_wrapped_as_connection_error(self, datum_repository):
        failure = OperationalError("UPDATE", {}, Exception("database is locked"))

        with patch.object(datum_repository.session, "execute", side_effect=failure):
            with pytest.raises(ConnectionError) as exc_info:
                datum_repository.update_many(
                    [DeviceDatum.upload_id == "a"],
                    set_values={"active": True},
                )

        assert exc_info.value.__cause__ is failure
