from datetime import datetime
from typing import Any, Dict, List

from .models import EDITABLE_FIELDS, parse_timestamp

BOOL_FIELDS = ["private", "auto_init"]
OPTIONAL_STR_FIELDS = [
    "description",
    "gitignore_template",
    "owner_ref",
    "credential_ref",
]
CREATE_FIELDS = set(EDITABLE_FIELDS) | {"owner_ref", "credential_ref"}


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _check_scheduled_at(value: Any, now: datetime, errors: List[str]) -> None:
    try:
        when = parse_timestamp(value)
    except (TypeError, ValueError):
        errors.append("Field 'scheduled_at' must be a datetime or ISO-8601 timestamp")
        return
    if when <= now:
        errors.append("Field 'scheduled_at' must be in the future")


def _check_optional_fields(data: Dict[str, Any], errors: List[str]) -> None:
    for f in OPTIONAL_STR_FIELDS:
        if f in data and data[f] is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")
    for f in BOOL_FIELDS:
        if f in data and not isinstance(data[f], bool):
            errors.append(f"Field '{f}' must be a boolean")


def validate_job_spec(data: Dict[str, Any], now: datetime) -> List[str]:
    """
    Returns a list of validation error messages for a new job. Empty list means valid.
    Uniqueness against existing jobs is checked by the scheduler, not here.
    """
    errors: List[str] = []

    unknown = sorted(set(data) - CREATE_FIELDS)
    if unknown:
        errors.append(f"Unknown field(s): {', '.join(unknown)}")

    if "name" not in data:
        errors.append("Missing required field: name")
    elif not _is_non_empty_str(data["name"]):
        errors.append("Field 'name' must be a non-empty string")

    if "scheduled_at" not in data or data["scheduled_at"] is None:
        errors.append("Missing required field: scheduled_at")
    else:
        _check_scheduled_at(data["scheduled_at"], now, errors)

    _check_optional_fields(data, errors)
    return errors


def validate_job_update(data: Dict[str, Any], now: datetime) -> List[str]:
    """Validate a partial update; only fields that are present are checked."""
    errors: List[str] = []

    unknown = sorted(set(data) - set(EDITABLE_FIELDS))
    if unknown:
        errors.append(f"Field(s) cannot be updated: {', '.join(unknown)}")

    if "name" in data and not _is_non_empty_str(data["name"]):
        errors.append("Field 'name' must be a non-empty string")

    if "scheduled_at" in data:
        _check_scheduled_at(data["scheduled_at"], now, errors)

    _check_optional_fields(data, errors)
    return errors


def normalize_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Trim strings and parse timestamps of an already-validated spec."""
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if key == "scheduled_at":
            out[key] = parse_timestamp(value)
        elif key == "name":
            out[key] = value.strip()
        elif key == "description":
            out[key] = (value or "").strip()
        elif key == "gitignore_template":
            out[key] = (value or "").strip() or None
        else:
            out[key] = value
    return out
