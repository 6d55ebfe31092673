"""
Data Lifecycle - Validation.

============================================================
PURPOSE
============================================================
Checks that run before any store call.

- Identifying fields of data sets and records
- Selectors, translated into record filters
- Listing pagination

Every failure raises ValidationError.

============================================================
"""

from typing import Any, List, Optional, Sequence

from storage.models.device_data import DATA_SET_TYPE, DeviceDataSet, DeviceDatum

from .config import LifecycleConfig
from .errors import ValidationError
from .types import DataSetType, Pagination, Selector, SelectorKind


def _is_blank(value: Optional[str]) -> bool:
    return value is None or value == ""


def _missing_or_empty(value: Optional[str], name: str) -> Optional[str]:
    if value is None:
        return f"{name} is missing"
    if value == "":
        return f"{name} is empty"
    return None


def validate_data_set(data_set: Optional[DeviceDataSet], operation: str) -> None:
    """Data set present with non-empty user id and upload id."""
    if data_set is None:
        raise ValidationError("data set is missing", operation)
    for value, name in (
        (data_set.user_id, "data set user id"),
        (data_set.upload_id, "data set upload id"),
    ):
        problem = _missing_or_empty(value, name)
        if problem:
            raise ValidationError(problem, operation)


def validate_device_id(data_set: DeviceDataSet, operation: str) -> None:
    """Data set carries a non-empty device id."""
    if _is_blank(data_set.device_id):
        raise ValidationError("data set device id is missing", operation)


def validate_new_data_set(data_set: Optional[DeviceDataSet], operation: str) -> None:
    """Identifying fields required to create a data set."""
    validate_data_set(data_set, operation)
    validate_device_id(data_set, operation)
    if data_set.type not in (None, DATA_SET_TYPE):
        raise ValidationError(f"data set type must be {DATA_SET_TYPE!r}", operation)
    allowed = {kind.value for kind in DataSetType}
    if data_set.data_set_type is not None and data_set.data_set_type not in allowed:
        raise ValidationError(f"data set data set type {data_set.data_set_type!r} is invalid", operation)


def validate_user_id(user_id: Optional[str], operation: str) -> None:
    problem = _missing_or_empty(user_id, "user id")
    if problem:
        raise ValidationError(problem, operation)


def validate_upload_id(upload_id: Optional[str], operation: str) -> None:
    problem = _missing_or_empty(upload_id, "upload id")
    if problem:
        raise ValidationError(problem, operation)


def validate_records(records: Optional[Sequence[DeviceDatum]], operation: str) -> None:
    """
    Record list present; every record has a kind that is not a data set.

    An empty list is valid.
    """
    if records is None:
        raise ValidationError("data set data is missing", operation)
    for index, record in enumerate(records):
        if record is None:
            raise ValidationError(f"data set data at index {index} is missing", operation)
        if _is_blank(record.type):
            raise ValidationError(f"data set data at index {index} type is missing", operation)
        if record.type == DATA_SET_TYPE:
            raise ValidationError(
                f"data set data at index {index} type must not be {DATA_SET_TYPE!r}",
                operation,
            )


def translate_selectors(
    selectors: Optional[Sequence[Selector]],
    operation: str
) -> List[Any]:
    """
    Translate selectors into DeviceDatum filter expressions.

    None selects every record (no extra filter). Otherwise the
    selectors must be non-empty and all address records by the
    same field.

    Returns:
        Filter expressions to AND into the record query
    """
    if selectors is None:
        return []
    if len(selectors) == 0:
        raise ValidationError("selectors is empty", operation)

    values_by_kind = {kind: [] for kind in SelectorKind}
    for index, selector in enumerate(selectors):
        if selector is None or selector.kind is None:
            raise ValidationError(f"selector at index {index} is invalid", operation)
        values_by_kind[selector.kind].append(selector.value)

    used = [kind for kind, values in values_by_kind.items() if values]
    if len(used) > 1:
        raise ValidationError(
            "selectors is invalid, only one type of selector allowed",
            operation,
        )

    kind = used[0]
    values = values_by_kind[kind]
    if kind is SelectorKind.ID:
        return [DeviceDatum.id.in_(values)]
    if kind is SelectorKind.DEDUPLICATOR_HASH:
        return [DeviceDatum.deduplicator_hash.in_(values)]
    return [DeviceDatum.origin_id.in_(values)]


def resolve_pagination(
    pagination: Optional[Pagination],
    config: LifecycleConfig,
    operation: str
) -> Pagination:
    """Default and bound a listing's pagination."""
    if pagination is None:
        return Pagination(page=0, size=config.default_page_size)
    if pagination.page < 0:
        raise ValidationError("pagination page must be >= 0", operation)
    if not 1 <= pagination.size <= config.maximum_page_size:
        raise ValidationError(
            f"pagination size must be within 1..{config.maximum_page_size}",
            operation,
        )
    return pagination


__all__ = [
    "validate_data_set",
    "validate_device_id",
    "validate_new_data_set",
    "validate_user_id",
    "validate_upload_id",
    "validate_records",
    "translate_selectors",
    "resolve_pagination",
]
