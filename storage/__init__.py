"""
Storage Package.

This package manages persistence of uploaded device data.

Modules:
- database: Engine, sessions, schema creation
- models/: ORM models (deviceDataSets, deviceData)
- repositories/: Data access layer
"""

from storage.database import Database, DatabaseConfig, load_database_config


__all__ = [
    "Database",
    "DatabaseConfig",
    "load_database_config",
]
