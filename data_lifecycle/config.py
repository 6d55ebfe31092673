"""
Data Lifecycle - Configuration.

============================================================
PURPOSE
============================================================
Configuration for the lifecycle orchestrator and the store it
runs against, loaded from the environment (and a .env file
when present).

CRITICAL CONSTRAINTS:
- No retries are configurable: callers own retry policy
- Timestamps are always UTC

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from storage.database import DatabaseConfig, load_database_config


# ============================================================
# LIFECYCLE CONFIGURATION
# ============================================================

@dataclass
class LifecycleConfig:
    """
    Lifecycle orchestrator settings.
    """

    default_page_size: int = 100
    """Page size when a listing is not paginated explicitly."""

    maximum_page_size: int = 1000
    """Largest page size accepted."""

    timestamp_precision_ms: int = 1
    """Granularity of persisted timestamps."""

    def validate(self) -> None:
        if self.default_page_size < 1:
            raise ValueError("default_page_size must be positive")
        if self.maximum_page_size < self.default_page_size:
            raise ValueError("maximum_page_size must be >= default_page_size")
        if not 1 <= self.timestamp_precision_ms <= 1000:
            raise ValueError("timestamp_precision_ms must be within 1..1000")


# ============================================================
# MAIN CONFIGURATION
# ============================================================

@dataclass
class AppConfig:
    """
    Complete configuration.
    """

    database: DatabaseConfig
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)


def _parse_int(value: Optional[str], default: int) -> int:
    """Parse integer from environment variable."""
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_lifecycle_config() -> LifecycleConfig:
    """Load lifecycle settings from environment variables."""
    load_dotenv(override=False)

    config = LifecycleConfig(
        default_page_size=_parse_int(os.getenv("DATA_LIFECYCLE_DEFAULT_PAGE_SIZE"), 100),
        maximum_page_size=_parse_int(os.getenv("DATA_LIFECYCLE_MAXIMUM_PAGE_SIZE"), 1000),
        timestamp_precision_ms=_parse_int(os.getenv("DATA_LIFECYCLE_TIMESTAMP_PRECISION_MS"), 1),
    )
    config.validate()
    return config


def load_config() -> AppConfig:
    """Load the complete configuration from environment variables."""
    return AppConfig(
        database=load_database_config(),
        lifecycle=load_lifecycle_config(),
    )


__all__ = [
    "LifecycleConfig",
    "AppConfig",
    "load_lifecycle_config",
    "load_config",
]
