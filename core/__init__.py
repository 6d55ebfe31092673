"""
Core Module Package.

This package contains the infrastructure components the
storage and lifecycle packages depend on.

Components:
- clock: Injected time source for persisted timestamps
"""

from core.clock import (
    ClockProtocol,
    MockClock,
    SystemClock,
    ensure_utc,
    to_iso8601,
    truncate_to_milliseconds,
)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "truncate_to_milliseconds",
    "to_iso8601",
]
