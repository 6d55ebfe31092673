"""
Data Lifecycle - Types.

============================================================
PURPOSE
============================================================
Value types used by the lifecycle orchestrator.

- Data set state and type
- Deletion state with named transitions
- Listing filter and pagination
- Record selectors
- Data set update
- Archive-state groups used by unarchive

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


# ============================================================
# DATA SET STATE
# ============================================================

class DataSetState(Enum):
    """Upload state of a data set."""

    OPEN = "open"
    """Records may still arrive."""

    CLOSED = "closed"
    """Upload complete."""


class DataSetType(Enum):
    """How a data set receives records."""

    NORMAL = "normal"
    CONTINUOUS = "continuous"


# ============================================================
# DELETION STATE
# ============================================================

class DeletionState(Enum):
    """
    Deletion state of a data set or record.

    State Machine:

        LIVE ──► SOFT_DELETED ──► PURGED
          │                         ▲
          └─────────────────────────┘

    PURGED is terminal.
    """

    LIVE = "live"
    SOFT_DELETED = "soft_deleted"
    PURGED = "purged"

    @classmethod
    def of(cls, entity: Any) -> "DeletionState":
        """Deletion state of a persisted entity, read from its deletedTime."""
        if getattr(entity, "deleted_time", None) is None:
            return cls.LIVE
        return cls.SOFT_DELETED


DELETION_TRANSITIONS: Dict[DeletionState, Set[DeletionState]] = {
    DeletionState.LIVE: {DeletionState.SOFT_DELETED, DeletionState.PURGED},
    DeletionState.SOFT_DELETED: {DeletionState.PURGED},
    DeletionState.PURGED: set(),
}


class InvalidDeletionTransition(Exception):
    """Raised for a deletion transition the state machine forbids."""

    def __init__(self, from_state: DeletionState, to_state: DeletionState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Cannot transition from {from_state.value} to {to_state.value}")


def transition_deletion(from_state: DeletionState, to_state: DeletionState) -> DeletionState:
    """
    Validate and perform a deletion transition.

    Raises:
        InvalidDeletionTransition: If the transition is not allowed
    """
    if to_state not in DELETION_TRANSITIONS[from_state]:
        raise InvalidDeletionTransition(from_state, to_state)
    return to_state


def soft_delete(state: DeletionState) -> DeletionState:
    """LIVE -> SOFT_DELETED."""
    return transition_deletion(state, DeletionState.SOFT_DELETED)


def purge(state: DeletionState) -> DeletionState:
    """LIVE or SOFT_DELETED -> PURGED."""
    return transition_deletion(state, DeletionState.PURGED)


# ============================================================
# LISTING
# ============================================================

@dataclass
class DataSetFilter:
    """Filter for listing a user's data sets."""

    client_name: Optional[str] = None
    """Only sets uploaded by this client."""

    deleted: bool = False
    """Include soft-deleted sets."""

    device_id: Optional[str] = None
    """Only sets from this device."""


@dataclass
class Pagination:
    """Zero-based page of a listing."""

    page: int = 0
    size: int = 100

    @property
    def offset(self) -> int:
        return self.page * self.size


# ============================================================
# SELECTORS
# ============================================================

class SelectorKind(Enum):
    """Which field a selector addresses a record by."""

    ID = "id"
    DEDUPLICATOR_HASH = "deduplicator_hash"
    ORIGIN_ID = "origin_id"


@dataclass(frozen=True)
class Selector:
    """
    Addresses a record by id, deduplicator hash or origin id.

    When more than one field is set the first of id, hash,
    origin id wins.
    """

    id: Optional[str] = None
    deduplicator_hash: Optional[str] = None
    origin_id: Optional[str] = None

    @property
    def kind(self) -> Optional[SelectorKind]:
        if self.id:
            return SelectorKind.ID
        if self.deduplicator_hash:
            return SelectorKind.DEDUPLICATOR_HASH
        if self.origin_id:
            return SelectorKind.ORIGIN_ID
        return None

    @property
    def value(self) -> Optional[str]:
        kind = self.kind
        if kind is None:
            return None
        return getattr(self, kind.value)


# ============================================================
# DATA SET UPDATE
# ============================================================

@dataclass
class DataSetUpdate:
    """Changes applied to a data set by update_data_set."""

    active: Optional[bool] = None
    device_id: Optional[str] = None
    device_model: Optional[str] = None
    device_serial_number: Optional[str] = None
    deduplicator: Optional[Dict[str, Any]] = None
    state: Optional[DataSetState] = None
    time: Optional[datetime] = None
    time_zone_name: Optional[str] = None
    time_zone_offset: Optional[int] = None

    def to_values(self) -> Dict[str, Any]:
        """Attribute name -> value for every field that is set."""
        values: Dict[str, Any] = {}
        for name in (
            "active",
            "device_id",
            "device_model",
            "device_serial_number",
            "deduplicator",
            "time",
            "time_zone_name",
            "time_zone_offset",
        ):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        if self.state is not None:
            values["state"] = self.state.value
        return values

    @property
    def is_empty(self) -> bool:
        return not self.to_values()


# ============================================================
# ARCHIVE STATE GROUPS
# ============================================================

@dataclass
class ArchiveStateGroup:
    """
    A data set's records sharing one archive state.

    The triple (active, archived_data_set_id, archived_time) is
    what those records looked like before whatever touched them
    last; hashes are the deduplicator hashes of those records.
    """

    active: bool
    archived_data_set_id: Optional[str]
    archived_time: Optional[datetime]
    hashes: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        """Inactive exactly when both archive fields are present."""
        archived = self.archived_data_set_id is not None and self.archived_time is not None
        unarchived = self.archived_data_set_id is None and self.archived_time is None
        if self.active:
            return unarchived
        return archived


__all__ = [
    "DataSetState",
    "DataSetType",
    "DeletionState",
    "DELETION_TRANSITIONS",
    "InvalidDeletionTransition",
    "transition_deletion",
    "soft_delete",
    "purge",
    "DataSetFilter",
    "Pagination",
    "SelectorKind",
    "Selector",
    "DataSetUpdate",
    "ArchiveStateGroup",
]
