"""
Data Lifecycle Package.

============================================================
PURPOSE
============================================================
Lifecycle of uploaded device data: data set creation, record
ingestion, activation, hash-based archival of superseded
records, deletion and per-user erasure.

============================================================
COMPONENTS
============================================================
- service: DataLifecycleService orchestrator
- archival: archive / unarchive algorithms
- validation: checks run before any store call
- types: value types and the deletion state machine
- errors: error taxonomy
- config: settings loaded from the environment

============================================================
"""

from .archival import (
    archive_device_data_using_hashes,
    unarchive_device_data_using_hashes,
)
from .config import AppConfig, LifecycleConfig, load_config, load_lifecycle_config
from .errors import (
    ConflictError,
    ErrorCategory,
    LifecycleError,
    NotFoundError,
    PreconditionError,
    StoreError,
    ValidationError,
)
from .service import DataLifecycleService, RemovalCounts
from .types import (
    ArchiveStateGroup,
    DataSetFilter,
    DataSetState,
    DataSetType,
    DataSetUpdate,
    DeletionState,
    InvalidDeletionTransition,
    Pagination,
    Selector,
    SelectorKind,
)


__all__ = [
    # Service
    "DataLifecycleService",
    "RemovalCounts",
    # Archival
    "archive_device_data_using_hashes",
    "unarchive_device_data_using_hashes",
    # Config
    "AppConfig",
    "LifecycleConfig",
    "load_config",
    "load_lifecycle_config",
    # Errors
    "ErrorCategory",
    "LifecycleError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "PreconditionError",
    "StoreError",
    # Types
    "ArchiveStateGroup",
    "DataSetFilter",
    "DataSetState",
    "DataSetType",
    "DataSetUpdate",
    "DeletionState",
    "InvalidDeletionTransition",
    "Pagination",
    "Selector",
    "SelectorKind",
]
