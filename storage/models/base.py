"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Provides the declarative base, column types and mixins used
by the device data ORM models.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- UTCDateTime: Timezone-aware UTC datetime column type
- TimestampMixin: createdTime / modifiedTime columns

============================================================
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    DateTime column that always round-trips aware UTC values.

    Backends without timezone support (SQLite) hand back naive
    datetimes; those are re-attached to UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All device data models inherit from this base. This provides
    a common foundation for table creation.
    """

    type_annotation_map = {
        datetime: UTCDateTime(),
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.

    Adds createdTime and modifiedTime columns. Values are stamped
    by the lifecycle layer from its injected clock rather than by
    server defaults, so every row touched by one operation carries
    the same timestamp.

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_time: Mapped[Optional[datetime]] = mapped_column(
        "createdTime",
        UTCDateTime(),
        nullable=True,
        comment="Creation timestamp (UTC, millisecond precision)"
    )

    modified_time: Mapped[Optional[datetime]] = mapped_column(
        "modifiedTime",
        UTCDateTime(),
        nullable=True,
        comment="Last modification timestamp (UTC, millisecond precision)"
    )
