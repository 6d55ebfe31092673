"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access MUST go through repository classes.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. DAO Pattern: One repository per table
2. Session Injection: Sessions are injected, not created internally
3. Explicit Methods: No generic 'execute', clear method names
4. Per-request atomicity: every mutating call commits on its own
5. Exception Handling: All DB errors wrapped in repository exceptions

============================================================
REPOSITORIES
============================================================
- DeviceDataSetRepository: data set documents (deviceDataSets)
- DeviceDatumRepository: device records (deviceData)

============================================================
USAGE
============================================================

    from storage.database import Database
    from storage.repositories import DeviceDataSetRepository

    with database.session_scope() as session:
        data_sets = DeviceDataSetRepository(session)
        data_set = data_sets.get("upload-1")

============================================================
"""

# =============================================================
# EXCEPTIONS
# =============================================================
from storage.repositories.exceptions import (
    RepositoryException,
    DuplicateRecordError,
    IntegrityError,
    ConnectionError,
    QueryError,
    TransactionError,
    RepositoryClosedError,
    BulkWriteError,
)

# =============================================================
# BASE REPOSITORY
# =============================================================
from storage.repositories.base import BaseRepository

# =============================================================
# DEVICE DATA REPOSITORIES
# =============================================================
from storage.repositories.data_set import DeviceDataSetRepository
from storage.repositories.datum import DeviceDatumRepository, GroupedValues

# =============================================================
# PUBLIC API
# =============================================================
__all__ = [
    # Exceptions
    "RepositoryException",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "TransactionError",
    "RepositoryClosedError",
    "BulkWriteError",

    # Base
    "BaseRepository",

    # Device Data
    "DeviceDataSetRepository",
    "DeviceDatumRepository",
    "GroupedValues",
]
