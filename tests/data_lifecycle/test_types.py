"""
Tests for lifecycle value types and validation helpers.
"""

from datetime import datetime, timezone

import pytest

from data_lifecycle.config import LifecycleConfig
from data_lifecycle.errors import ErrorCategory, ValidationError
from data_lifecycle.types import (
    ArchiveStateGroup,
    DataSetState,
    DataSetUpdate,
    DeletionState,
    InvalidDeletionTransition,
    Pagination,
    Selector,
    SelectorKind,
    purge,
    soft_delete,
)
from data_lifecycle.validation import resolve_pagination, translate_selectors, validate_records
from storage.models.device_data import DeviceDataSet, DeviceDatum


ARCHIVED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ============================================================
# DELETION STATE TESTS
# ============================================================

class TestDeletionState:
    """Tests for the deletion state machine."""

    def test_of_reads_deleted_time(self):
        assert DeletionState.of(DeviceDataSet()) is DeletionState.LIVE
        assert DeletionState.of(DeviceDataSet(deleted_time=ARCHIVED_AT)) is DeletionState.SOFT_DELETED

    def test_allowed_transitions(self):
        assert soft_delete(DeletionState.LIVE) is DeletionState.SOFT_DELETED
        assert purge(DeletionState.LIVE) is DeletionState.PURGED
        assert purge(DeletionState.SOFT_DELETED) is DeletionState.PURGED

    @pytest.mark.parametrize("transition,state", [
        (soft_delete, DeletionState.SOFT_DELETED),
        (soft_delete, DeletionState.PURGED),
        (purge, DeletionState.PURGED),
    ])
    def test_forbidden_transitions(self, transition, state):
        with pytest.raises(InvalidDeletionTransition):
            transition(state)


# ============================================================
# SELECTOR TESTS
# ============================================================

class TestSelectors:
    """Tests for selectors and their translation into filters."""

    def test_kind_precedence(self):
        selector = Selector(id="r1", deduplicator_hash="h1")

        assert selector.kind is SelectorKind.ID
        assert selector.value == "r1"
        assert Selector(origin_id="o1").kind is SelectorKind.ORIGIN_ID
        assert Selector().kind is None

    def test_none_selects_everything(self):
        assert translate_selectors(None, "op") == []

    def test_single_filter_per_kind(self):
        where = translate_selectors(
            [Selector(deduplicator_hash="h1"), Selector(deduplicator_hash="h2")],
            "op",
        )

        assert len(where) == 1
        assert "_deduplicatorHash" in str(where[0])

    def test_mixed_kinds_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            translate_selectors([Selector(id="r1"), Selector(origin_id="o1")], "op")

        assert exc_info.value.category is ErrorCategory.VALIDATION
        assert str(exc_info.value).startswith("op: ")


# ============================================================
# DATA SET UPDATE TESTS
# ============================================================

class TestDataSetUpdate:

    def test_to_values_skips_unset_fields(self):
        update = DataSetUpdate(state=DataSetState.CLOSED, time_zone_offset=-300)

        assert update.to_values() == {"state": "closed", "time_zone_offset": -300}
        assert not update.is_empty
        assert DataSetUpdate().is_empty

    def test_false_is_a_change(self):
        assert DataSetUpdate(active=False).to_values() == {"active": False}


# ============================================================
# ARCHIVE STATE GROUP TESTS
# ============================================================

class TestArchiveStateGroup:

    @pytest.mark.parametrize("active,archived_id,archived_time,consistent", [
        (True, None, None, True),
        (False, "upload-b", ARCHIVED_AT, True),
        (False, None, None, False),
        (False, "upload-b", None, False),
        (True, "upload-b", ARCHIVED_AT, False),
        (True, None, ARCHIVED_AT, False),
    ])
    def test_is_consistent(self, active, archived_id, archived_time, consistent):
        group = ArchiveStateGroup(active, archived_id, archived_time, ["h1"])

        assert group.is_consistent is consistent


# ============================================================
# VALIDATION TESTS
# ============================================================

class TestValidation:

    def test_records_empty_list_is_valid(self):
        validate_records([], "op")

    def test_record_without_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_records([DeviceDatum(type="cbg"), DeviceDatum()], "op")

        assert "index 1" in exc_info.value.message

    def test_pagination_defaults_from_config(self):
        config = LifecycleConfig(default_page_size=25)

        pagination = resolve_pagination(None, config, "op")

        assert pagination == Pagination(page=0, size=25)
        assert Pagination(page=3, size=25).offset == 75
